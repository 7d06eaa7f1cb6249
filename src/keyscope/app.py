"""Keyscope Textual keyspace browser."""

from __future__ import annotations

from pathlib import Path

from textual.app import App, ComposeResult
from textual.containers import Horizontal
from textual.widgets import Footer, Header, Input, Static

from keyscope.config.models import AppSettings
from keyscope.config.store import SettingsStore
from keyscope.keyspace.inspect import inspect_key
from keyscope.keyspace.namespaces import NamespaceInfo, list_namespaces
from keyscope.messages import InspectKey, SelectNamespace
from keyscope.runtime_logging import configure_runtime_logging
from keyscope.scan.events import ScanListener, SessionState
from keyscope.scan.scheduler import ScanScheduler
from keyscope.store.errors import StoreFailure
from keyscope.store.executor import CommandExecutor
from keyscope.store.transport import TransportFactory, connect_redis
from keyscope.widgets.key_detail import KeyDetailPanel
from keyscope.widgets.keyspace_tree import KeyspaceTreePanel


class _AppListener(ScanListener):
    def __init__(self, app: "KeyscopeApp") -> None:
        self.app = app

    def on_batch(self, keys: list[str]) -> None:
        self.app.refresh_keyspace()

    def on_key_count_update(self, namespace: int, count: int) -> None:
        self.app.refresh_status()

    def on_session_state_change(self, state: SessionState) -> None:
        self.app.refresh_status()

    def on_capacity_warning(self, hard_cap: int) -> None:
        self.app.notify(f"Stopped at the limit of {hard_cap} keys.", severity="warning")

    def on_advisory(self, message: str) -> None:
        self.app.notify(message, severity="warning")

    def on_error(self, failure: StoreFailure, terminal: bool) -> None:
        severity = "error" if terminal else "warning"
        self.app.notify(f"{failure.kind.value}: {failure.message}", severity=severity)


class KeyscopeApp(App[None]):
    TITLE = "keyscope"
    SUB_TITLE = "Incremental keyspace browser"

    BINDINGS = [
        ("ctrl+r", "rescan", "Rescan"),
        ("ctrl+l", "load_more", "More"),
        ("ctrl+s", "toggle_pause", "Pause/Resume"),
        ("ctrl+x", "abort", "Abort"),
        ("ctrl+n", "next_namespace", "Namespace"),
    ]

    CSS = """
    Screen {
        layout: vertical;
    }

    #pattern {
        margin: 0 1;
    }

    #main-body {
        height: 1fr;
        layout: horizontal;
    }

    #keyspace {
        width: 2fr;
    }

    #status {
        height: 1;
        padding: 0 1;
        color: $text-muted;
    }
    """

    def __init__(
        self,
        *,
        settings: AppSettings | None = None,
        transport_factory: TransportFactory = connect_redis,
        initial_pattern: str = "*",
        log_level: str | None = None,
        log_file: str | Path | None = None,
    ) -> None:
        self.logger = configure_runtime_logging(level=log_level, log_file=log_file)
        self.settings = settings or SettingsStore().load()
        self.initial_pattern = initial_pattern
        self.executor = CommandExecutor(
            self.settings.connection,
            self.settings.executor,
            transport_factory=transport_factory,
        )
        self.scheduler = ScanScheduler(
            self.executor,
            self.settings.scan,
            listener=_AppListener(self),
            separator=self.settings.tree.separator,
        )
        self.namespaces: list[NamespaceInfo] = []
        self.status_line = ""
        self.logger.info("app.initialized", target=self.settings.connection.describe())
        super().__init__()

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        yield Input(
            value=self.initial_pattern,
            placeholder="Patterns, comma separated (e.g. user:*, session:*)",
            id="pattern",
        )
        with Horizontal(id="main-body"):
            yield KeyspaceTreePanel(self._tree_label(), id="keyspace")
            yield KeyDetailPanel(id="detail")
        yield Static("", id="status")
        yield Footer()

    async def on_mount(self) -> None:
        self.theme = self.settings.appearance.theme
        self.logger.info("app.mounted", theme=self.theme)
        self.run_worker(self._connect_and_search(), group="scan", exclusive=True)

    async def on_unmount(self) -> None:
        self.scheduler.listener = ScanListener()
        self.scheduler.abort()
        await self.executor.close()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        if event.input.id != "pattern":
            return
        self.action_rescan()

    def on_inspect_key(self, message: InspectKey) -> None:
        self.query_one(KeyDetailPanel).show_pending(message.key)
        self.run_worker(self._inspect(message.key), group="inspect", exclusive=True)

    def on_select_namespace(self, message: SelectNamespace) -> None:
        self.logger.info("app.namespace.requested", namespace=message.index)
        self.run_worker(self._switch_namespace(message.index), group="scan", exclusive=True)

    def action_rescan(self) -> None:
        self.run_worker(self._search(), group="scan", exclusive=True)

    def action_load_more(self) -> None:
        self.run_worker(self._load_more(), group="scan", exclusive=True)

    def action_toggle_pause(self) -> None:
        if self.scheduler.state == "paused":
            if self.scheduler.resume():
                self.action_load_more()
        else:
            self.scheduler.pause()

    def action_abort(self) -> None:
        self.scheduler.abort()

    def action_next_namespace(self) -> None:
        indexes = [item.index for item in self.namespaces] or [0]
        current = self.scheduler.namespace
        later = [index for index in indexes if index > current]
        target = later[0] if later else indexes[0]
        if target == current and len(indexes) == 1:
            self.notify("No other namespace holds keys.", severity="information")
            return
        self.post_message(SelectNamespace(index=target))

    def refresh_keyspace(self) -> None:
        self.query_one(KeyspaceTreePanel).show(self.scheduler.tree(), label=self._tree_label())
        self.refresh_status()

    def refresh_status(self) -> None:
        scheduler = self.scheduler
        parts = [
            self.settings.connection.describe(),
            f"db{scheduler.namespace}",
            scheduler.state,
            f"{len(scheduler.session.keys)} keys",
        ]
        if scheduler.known_size is not None:
            parts.append(f"size {scheduler.known_size}")
        if scheduler.capped:
            parts.append("capped")
        if scheduler.session.finished:
            parts.append("done")
        self.status_line = " | ".join(parts)
        self.query_one("#status", Static).update(self.status_line)

    def _patterns(self) -> list[str]:
        raw = self.query_one("#pattern", Input).value
        return [part for part in raw.split(",") if part.strip()]

    def _tree_label(self) -> str:
        return f"db{self.scheduler.namespace}"

    async def _connect_and_search(self) -> None:
        try:
            await self.executor.connect()
        except StoreFailure as failure:
            self.logger.error("app.connect.failed", error=failure.message)
            self.notify(f"Could not connect: {failure.message}", severity="error")
            self.refresh_status()
            return
        self.namespaces = await list_namespaces(self.executor, current=self.scheduler.namespace)
        await self._switch_namespace(self.settings.connection.db)

    async def _switch_namespace(self, index: int) -> None:
        await self.scheduler.select_namespace(index)
        self.refresh_keyspace()
        await self._search()

    async def _search(self) -> None:
        try:
            await self.scheduler.start_search(self._patterns())
        except StoreFailure as failure:
            self.logger.error("app.search.failed", error=failure.message)
        self.refresh_keyspace()

    async def _load_more(self) -> None:
        try:
            added = await self.scheduler.load_next_batch()
        except StoreFailure as failure:
            self.logger.error("app.load.failed", error=failure.message)
            added = 0
        self.refresh_keyspace()
        self.logger.debug("app.load.completed", added=added)

    async def _inspect(self, key: str) -> None:
        record = await inspect_key(self.executor, key)
        self.query_one(KeyDetailPanel).show_record(record)
