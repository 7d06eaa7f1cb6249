"""Single-command execution with timeout, retry/backoff and transparent reconnect."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from keyscope.config.models import ConnectionSettings, ExecutorSettings
from keyscope.runtime_logging import get_runtime_logger
from keyscope.store.errors import ErrorKind, StoreFailure, connection_lost, transient
from keyscope.store.transport import Transport, TransportFactory, connect_redis

BULK_COMMANDS = frozenset({"SCAN", "KEYS"})

_UNSET: Any = object()


@dataclass(slots=True)
class CommandResult:
    command: str
    value: Any = None
    error: StoreFailure | None = None
    attempts: int = 1
    reconnected: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> Any:
        if self.error is not None:
            raise self.error
        return self.value


class CommandExecutor:
    """Owns the shared transport handle and runs one command at a time through it.

    Transient failures are retried with exponential backoff. A lost connection
    triggers exactly one reconnect with the stored descriptor, after which the
    command is retried once more. Failures are returned as :class:`CommandResult`
    values, never raised.

    Other components must not keep the transport; read :attr:`transport` when
    it is needed because a reconnect replaces it.
    """

    def __init__(
        self,
        descriptor: ConnectionSettings,
        settings: ExecutorSettings | None = None,
        *,
        transport_factory: TransportFactory = connect_redis,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.descriptor = descriptor
        self.settings = settings or ExecutorSettings()
        self._factory = transport_factory
        self._sleep = sleep
        self._transport: Transport | None = None
        self._serial = asyncio.Lock() if descriptor.max_connections <= 1 else None
        self._reconnect_lock = asyncio.Lock()
        self.generation = 0
        self.logger = get_runtime_logger()

    @property
    def transport(self) -> Transport | None:
        return self._transport

    @property
    def connected(self) -> bool:
        return self._transport is not None

    async def connect(self) -> None:
        transport = await self._factory(self.descriptor)
        previous, self._transport = self._transport, transport
        self.generation += 1
        self.logger.info(
            "executor.connected",
            target=self.descriptor.describe(),
            generation=self.generation,
        )
        if previous is not None:
            await self._close_quietly(previous)

    async def reconnect(self, *, stale_generation: int | None = None) -> None:
        async with self._reconnect_lock:
            if (
                stale_generation is not None
                and self.generation != stale_generation
                and self._transport is not None
            ):
                # Another caller already replaced the handle.
                return
            await self.connect()

    async def close(self) -> None:
        transport, self._transport = self._transport, None
        if transport is not None:
            await self._close_quietly(transport)
            self.logger.info("executor.closed", target=self.descriptor.describe())

    def timeout_for(self, command: str) -> float | None:
        if command.upper() in BULK_COMMANDS:
            return self.settings.scan_timeout_s
        return self.settings.metadata_timeout_s

    def backoff_delay(self, retry_index: int) -> float:
        delay = self.settings.backoff_base_s * (2**retry_index)
        return min(delay, self.settings.backoff_max_s)

    async def execute(
        self,
        command: str,
        *args: Any,
        timeout: float | None = _UNSET,
        retries: int | None = None,
    ) -> CommandResult:
        name = command.upper()
        effective_timeout = self.timeout_for(name) if timeout is _UNSET else timeout
        max_retries = self.settings.retries if retries is None else retries

        attempts = 0
        retried = 0
        reconnected = False
        while True:
            attempts += 1
            generation = self.generation
            try:
                value = await self._send(name, args, effective_timeout)
            except StoreFailure as failure:
                if failure.command is None:
                    failure.command = name

                if failure.kind.retryable and retried < max_retries:
                    delay = self.backoff_delay(retried)
                    retried += 1
                    self.logger.warning(
                        "executor.retry",
                        command=name,
                        attempt=attempts,
                        delay_s=delay,
                        error=failure.message,
                    )
                    await self._sleep(delay)
                    continue

                if failure.kind is ErrorKind.CONNECTION_LOST and not reconnected:
                    reconnected = True
                    self.logger.warning("executor.reconnect", command=name, error=failure.message)
                    try:
                        await self.reconnect(stale_generation=generation)
                    except StoreFailure as exc:
                        self.logger.error(
                            "executor.reconnect.failed",
                            command=name,
                            target=self.descriptor.describe(),
                            error=exc.message,
                        )
                        return CommandResult(
                            name,
                            error=connection_lost(f"reconnect failed: {exc.message}", name),
                            attempts=attempts,
                            reconnected=True,
                        )
                    continue

                self.logger.error(
                    "executor.failed",
                    command=name,
                    kind=failure.kind.value,
                    attempts=attempts,
                    error=failure.message,
                )
                return CommandResult(name, error=failure, attempts=attempts, reconnected=reconnected)

            if name == "SELECT" and args:
                self._remember_namespace(args[0])
            return CommandResult(name, value=value, attempts=attempts, reconnected=reconnected)

    async def _send(self, command: str, args: tuple[Any, ...], timeout: float | None) -> Any:
        if self._serial is None:
            return await self._send_now(command, args, timeout)
        # The timeout covers execution only, not time spent waiting in line.
        async with self._serial:
            return await self._send_now(command, args, timeout)

    async def _send_now(self, command: str, args: tuple[Any, ...], timeout: float | None) -> Any:
        transport = self._transport
        if transport is None:
            raise connection_lost("no open connection", command)
        if timeout is None:
            return await transport.send(command, *args)
        try:
            return await asyncio.wait_for(transport.send(command, *args), timeout)
        except asyncio.TimeoutError as exc:
            raise transient(f"timed out after {timeout:g}s", command) from exc

    def _remember_namespace(self, index: Any) -> None:
        try:
            db = int(index)
        except (TypeError, ValueError):
            return
        self.descriptor = self.descriptor.model_copy(update={"db": db})

    async def _close_quietly(self, transport: Transport) -> None:
        try:
            await transport.close()
        except StoreFailure as exc:
            self.logger.debug("executor.close.failed", error=exc.message)
