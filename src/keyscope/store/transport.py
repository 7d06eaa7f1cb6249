"""Transport seam between the command executor and a concrete store client."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Protocol

from redis.asyncio import Redis
from redis.exceptions import BusyLoadingError
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from keyscope.config.models import ConnectionSettings
from keyscope.runtime_logging import get_runtime_logger
from keyscope.store.errors import ErrorKind, StoreFailure, connection_lost


class Transport(Protocol):
    async def send(self, command: str, *args: Any) -> Any: ...

    async def close(self) -> None: ...


TransportFactory = Callable[[ConnectionSettings], Awaitable[Transport]]


def map_redis_error(exc: RedisError, command: str | None = None) -> StoreFailure:
    if isinstance(exc, RedisTimeoutError):
        return StoreFailure(ErrorKind.TRANSIENT, str(exc) or "timed out", command)
    if isinstance(exc, BusyLoadingError):
        return StoreFailure(ErrorKind.TRANSIENT, str(exc) or "server is loading", command)
    if isinstance(exc, RedisConnectionError):
        return StoreFailure(ErrorKind.CONNECTION_LOST, str(exc) or "connection lost", command)
    return StoreFailure(ErrorKind.REJECTED, str(exc) or type(exc).__name__, command)


class RedisTransport:
    """``redis.asyncio`` client behind the :class:`Transport` protocol.

    A pooled client cannot change database per connection, so ``SELECT`` is
    served by opening a fresh pool on the requested database and closing the
    previous one.
    """

    def __init__(self, settings: ConnectionSettings) -> None:
        self.settings = settings
        self.client: Redis | None = None
        self.logger = get_runtime_logger()

    @classmethod
    async def connect(cls, settings: ConnectionSettings) -> "RedisTransport":
        transport = cls(settings)
        transport.client = await transport._open(settings)
        return transport

    async def send(self, command: str, *args: Any) -> Any:
        name = command.upper()
        if self.client is None:
            raise connection_lost("client is closed", name)
        if name == "SELECT":
            return await self._select(args[0] if args else 0)
        try:
            return await self.client.execute_command(name, *args)
        except RedisError as exc:
            raise map_redis_error(exc, name) from exc

    async def close(self) -> None:
        client, self.client = self.client, None
        if client is None:
            return
        try:
            await client.aclose()
        except RedisError as exc:
            raise map_redis_error(exc, "CLOSE") from exc
        self.logger.debug("transport.closed", target=self.settings.describe())

    async def _select(self, index: Any) -> str:
        try:
            db = int(index)
        except (TypeError, ValueError) as exc:
            raise StoreFailure(ErrorKind.REJECTED, f"invalid database index {index!r}", "SELECT") from exc
        settings = self.settings.model_copy(update={"db": db})
        client = await self._open(settings)
        previous, self.client, self.settings = self.client, client, settings
        if previous is not None:
            try:
                await previous.aclose()
            except RedisError as exc:
                self.logger.debug("transport.close.failed", error=str(exc))
        self.logger.info("transport.selected", target=settings.describe())
        return "OK"

    async def _open(self, settings: ConnectionSettings) -> Redis:
        kwargs: dict[str, Any] = {
            "host": settings.host,
            "port": settings.port,
            "db": settings.db,
            "decode_responses": True,
            "max_connections": settings.max_connections,
            "socket_connect_timeout": settings.connect_timeout_s,
        }
        if settings.username:
            kwargs["username"] = settings.username
        if settings.password:
            kwargs["password"] = settings.password
        if settings.use_ssl:
            kwargs["ssl"] = True

        client = Redis(**kwargs)
        try:
            await client.ping()
        except RedisError as exc:
            await client.aclose()
            self.logger.error("transport.connect.failed", target=settings.describe(), error=str(exc))
            # Any handshake failure counts as a lost connection.
            raise connection_lost(map_redis_error(exc, "PING").message, "PING") from exc
        except BaseException:
            # Cancelled mid-handshake, typically by the caller's timeout.
            await client.aclose()
            raise
        self.logger.info("transport.connected", target=settings.describe())
        return client


async def connect_redis(settings: ConnectionSettings) -> Transport:
    return await RedisTransport.connect(settings)
