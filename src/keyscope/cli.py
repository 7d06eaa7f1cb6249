"""CLI entrypoint for keyscope."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from dataclasses import asdict
from typing import Any, TypeVar

import click
from pydantic import ValidationError

from keyscope.app import KeyscopeApp
from keyscope.config.models import AppSettings
from keyscope.config.store import SettingsStore, apply_overrides
from keyscope.keyspace.inspect import KeyRecord, inspect_key
from keyscope.keyspace.namespaces import NamespaceInfo, list_namespaces
from keyscope.keyspace.tree import render_lines
from keyscope.paths import settings_path
from keyscope.runtime_logging import configure_runtime_logging
from keyscope.scan.events import ScanListener
from keyscope.scan.scheduler import ScanScheduler
from keyscope.store.errors import StoreFailure
from keyscope.store.executor import CommandExecutor
from keyscope.store.transport import connect_redis
from keyscope.version import __version__

F = TypeVar("F", bound=Callable[..., Any])


def connection_options(func: F) -> F:
    options = [
        click.option("--host", help="Store host (defaults to the saved setting)"),
        click.option("--port", type=int, help="Store port"),
        click.option("--db", type=int, help="Logical namespace to open"),
        click.option("--password", help="Store password"),
        click.option("--log-level", help="Runtime log level (off, error, warning, info, debug)"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@click.group(invoke_without_command=True, context_settings={"help_option_names": ["-h", "--help"]})
@click.pass_context
def main(ctx: click.Context) -> None:
    """keyscope: incremental, non-blocking key browser for Redis-compatible stores."""
    if ctx.invoked_subcommand is None:
        ctx.invoke(browse)


@main.command()
@click.argument("patterns", nargs=-1)
@connection_options
@click.option("--count", type=int, help="COUNT hint per SCAN call")
@click.option("--concurrency", type=int, help="Patterns scanned per tick")
@click.option("--throttle-ms", type=int, help="Delay between ticks")
@click.option("--hard-cap", type=int, help="Stop after this many keys")
@click.option("--local-filter/--server-filter", default=None, help="Match patterns client-side")
@click.option("--tree", "as_tree", is_flag=True, help="Print keys grouped by separator")
@click.option("--separator", help="Tree separator")
def scan(
    patterns: tuple[str, ...],
    host: str | None,
    port: int | None,
    db: int | None,
    password: str | None,
    log_level: str | None,
    count: int | None,
    concurrency: int | None,
    throttle_ms: int | None,
    hard_cap: int | None,
    local_filter: bool | None,
    as_tree: bool,
    separator: str | None,
) -> None:
    """Scan keys matching PATTERNS (default: every key)."""
    configure_runtime_logging(level=log_level)
    settings = _settings(host=host, port=port, db=db, password=password)
    try:
        settings = apply_overrides(
            settings,
            "scan",
            count_per_batch=count,
            concurrency=concurrency,
            throttle_ms=throttle_ms,
            hard_cap=hard_cap,
            local_filter_enabled=local_filter,
        )
        settings = apply_overrides(settings, "tree", separator=separator)
    except ValidationError as exc:
        raise click.ClickException(str(exc)) from exc

    scheduler = _run(_scan(settings, patterns))
    if as_tree:
        for line in render_lines(scheduler.tree()):
            click.echo(line)
    else:
        for key in scheduler.keys:
            click.echo(key)

    summary = f"{len(scheduler.session.keys)} keys in db{scheduler.namespace} ({scheduler.state})"
    if scheduler.capped:
        summary += f", stopped at {settings.scan.hard_cap}"
    click.echo(summary, err=True)


@main.command("inspect")
@click.argument("key")
@connection_options
def inspect_command(
    key: str,
    host: str | None,
    port: int | None,
    db: int | None,
    password: str | None,
    log_level: str | None,
) -> None:
    """Show type, TTL and value of KEY as JSON."""
    configure_runtime_logging(level=log_level)
    settings = _settings(host=host, port=port, db=db, password=password)
    record = _run(_inspect(settings, key))
    payload = asdict(record)
    payload["label"] = record.label
    click.echo(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


@main.command()
@connection_options
def namespaces(
    host: str | None,
    port: int | None,
    db: int | None,
    password: str | None,
    log_level: str | None,
) -> None:
    """List logical namespaces that hold keys."""
    configure_runtime_logging(level=log_level)
    settings = _settings(host=host, port=port, db=db, password=password)
    for item in _run(_namespaces(settings)):
        click.echo(f"{item.name}\t{item.key_count}")


@main.command()
@click.argument("patterns", nargs=-1)
@connection_options
def browse(
    patterns: tuple[str, ...],
    host: str | None,
    port: int | None,
    db: int | None,
    password: str | None,
    log_level: str | None,
) -> None:
    """Open the interactive keyspace browser."""
    settings = _settings(host=host, port=port, db=db, password=password)
    app = KeyscopeApp(
        settings=settings,
        transport_factory=connect_redis,
        initial_pattern=", ".join(patterns) or "*",
        log_level=log_level,
    )
    app.run()


@main.command("set")
@click.argument("dotted_key")
@click.argument("value")
def set_command(dotted_key: str, value: str) -> None:
    """Persist one setting, e.g. ``keyscope set scan.hard_cap 20000``."""
    try:
        parsed: Any = json.loads(value)
    except json.JSONDecodeError:
        parsed = value
    try:
        updated = SettingsStore().update(dotted_key, parsed)
    except KeyError as exc:
        raise click.ClickException(str(exc.args[0])) from exc
    except ValidationError as exc:
        raise click.ClickException(f"Invalid value for {dotted_key}: {exc}") from exc
    for key, shown in updated.setting_items():
        if key == dotted_key:
            click.echo(f"{key} = {shown}")


@main.command("settings-path")
def settings_path_command() -> None:
    """Print settings file path."""
    click.echo(str(settings_path()))


@main.command()
def about() -> None:
    """Show version and project summary."""
    payload = {
        "name": "keyscope",
        "version": __version__,
        "description": "Incremental keyspace browser for Redis-compatible stores",
    }
    click.echo(json.dumps(payload, indent=2))


class _ConsoleListener(ScanListener):
    def on_capacity_warning(self, hard_cap: int) -> None:
        click.echo(f"warning: stopped at the limit of {hard_cap} keys", err=True)

    def on_advisory(self, message: str) -> None:
        click.echo(f"note: {message}", err=True)

    def on_error(self, failure: StoreFailure, terminal: bool) -> None:
        prefix = "error" if terminal else "warning"
        click.echo(f"{prefix}: {failure}", err=True)


def _settings(
    *,
    host: str | None,
    port: int | None,
    db: int | None,
    password: str | None,
) -> AppSettings:
    settings = SettingsStore().load()
    try:
        settings = apply_overrides(settings, "connection", host=host, port=port, db=db, password=password)
    except ValidationError as exc:
        raise click.ClickException(str(exc)) from exc
    return settings


def _executor(settings: AppSettings) -> CommandExecutor:
    return CommandExecutor(settings.connection, settings.executor, transport_factory=connect_redis)


def _run(coro: Any) -> Any:
    try:
        return asyncio.run(coro)
    except StoreFailure as failure:
        raise click.ClickException(f"{failure.kind.value}: {failure.message}") from failure


async def _scan(settings: AppSettings, patterns: tuple[str, ...]) -> ScanScheduler:
    executor = _executor(settings)
    scheduler = ScanScheduler(
        executor,
        settings.scan,
        listener=_ConsoleListener(),
        separator=settings.tree.separator,
    )
    try:
        await executor.connect()
        await scheduler.refresh_namespace_size()
        await scheduler.start_search(patterns)
        await scheduler.run()
        scheduler.flush()
    finally:
        await executor.close()
    return scheduler


async def _inspect(settings: AppSettings, key: str) -> KeyRecord:
    executor = _executor(settings)
    try:
        await executor.connect()
        return await inspect_key(executor, key)
    finally:
        await executor.close()


async def _namespaces(settings: AppSettings) -> list[NamespaceInfo]:
    executor = _executor(settings)
    try:
        await executor.connect()
        return await list_namespaces(executor, current=settings.connection.db)
    finally:
        await executor.close()


if __name__ == "__main__":
    main()
