"""In-memory stand-in for a Redis-style store, with failure injection."""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from fnmatch import fnmatchcase
from typing import Any

from keyscope.config.models import ConnectionSettings
from keyscope.store.errors import ErrorKind, StoreFailure, connection_lost


class SortedSet(dict):
    """Member -> score mapping stored as a zset."""


class FakeStore:
    """Numbered databases of insertion-ordered keys.

    SCAN treats the cursor as a slot index: each call examines ``COUNT`` slots
    and applies MATCH to what it examined, so a sparse pattern can yield empty
    batches with a non-zero cursor, as a real store does.
    """

    def __init__(self, databases: dict[int, dict[str, Any]] | None = None) -> None:
        self.databases: dict[int, dict[str, Any]] = defaultdict(dict)
        for index, entries in (databases or {}).items():
            self.databases[index].update(entries)
        self.ttls: dict[tuple[int, str], int] = {}
        self.calls: list[tuple[int, str, tuple[Any, ...]]] = []
        self.delays: dict[str, float] = {}
        self.in_flight = 0
        self.max_in_flight = 0
        self._failures: dict[str, deque[StoreFailure]] = defaultdict(deque)
        self._replies: dict[str, deque[Any]] = defaultdict(deque)

    # -- fixtures -----------------------------------------------------------

    def set(self, key: str, value: Any, *, db: int = 0, ttl: int | None = None) -> None:
        self.databases[db][key] = value
        if ttl is not None:
            self.ttls[(db, key)] = ttl

    def fail_next(self, command: str, kind: ErrorKind, *, times: int = 1, message: str = "injected") -> None:
        for _ in range(times):
            self._failures[command.upper()].append(StoreFailure(kind, message, command.upper()))

    def reply_next(self, command: str, value: Any, *, times: int = 1) -> None:
        """Return ``value`` verbatim instead of computing the reply."""
        for _ in range(times):
            self._replies[command.upper()].append(value)

    def commands(self, name: str) -> list[tuple[int, str, tuple[Any, ...]]]:
        return [call for call in self.calls if call[1] == name.upper()]

    # -- execution ----------------------------------------------------------

    async def run(self, db: int, command: str, args: tuple[Any, ...]) -> Any:
        name = command.upper()
        self.calls.append((db, name, args))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            delay = self.delays.get(name, 0.0)
            if delay:
                await asyncio.sleep(delay)
            else:
                await asyncio.sleep(0)
            if self._failures[name]:
                raise self._failures[name].popleft()
            if self._replies[name]:
                return self._replies[name].popleft()
            return self._dispatch(db, name, args)
        finally:
            self.in_flight -= 1

    def _dispatch(self, db: int, name: str, args: tuple[Any, ...]) -> Any:
        data = self.databases[db]
        if name == "SCAN":
            return self._scan(data, args)
        if name == "KEYS":
            return [key for key in data if fnmatchcase(key, str(args[0]))]
        if name == "DBSIZE":
            return len(data)
        if name == "SELECT":
            return "OK"
        if name == "INFO":
            return {
                f"db{index}": {"keys": len(entries), "expires": 0, "avg_ttl": 0}
                for index, entries in sorted(self.databases.items())
                if entries
            }
        if name == "PING":
            return True

        key = str(args[0])
        if name == "EXISTS":
            return 1 if key in data else 0
        if name == "TYPE":
            return _type_of(data[key]) if key in data else "none"
        if name == "TTL":
            if key not in data:
                return -2
            return self.ttls.get((db, key), -1)
        return self._read_value(data, name, key)

    def _scan(self, data: dict[str, Any], args: tuple[Any, ...]) -> list[Any]:
        cursor = int(args[0])
        options = {str(args[i]).upper(): args[i + 1] for i in range(1, len(args) - 1, 2)}
        count = int(options.get("COUNT", 10))
        pattern = str(options.get("MATCH", "*"))
        slots = list(data)
        examined = slots[cursor : cursor + count]
        next_cursor = cursor + count
        if next_cursor >= len(slots):
            next_cursor = 0
        return [str(next_cursor), [key for key in examined if fnmatchcase(key, pattern)]]

    def _read_value(self, data: dict[str, Any], name: str, key: str) -> Any:
        value = data.get(key)
        expected = {
            "GET": "string",
            "HGETALL": "hash",
            "LRANGE": "list",
            "SMEMBERS": "set",
            "ZRANGE": "zset",
        }.get(name)
        if expected is None:
            raise StoreFailure(ErrorKind.REJECTED, f"unknown command '{name}'", name)
        if value is None:
            return None if name == "GET" else {"HGETALL": {}, "SMEMBERS": set()}.get(name, [])
        if _type_of(value) != expected:
            raise StoreFailure(
                ErrorKind.REJECTED,
                "WRONGTYPE Operation against a key holding the wrong kind of value",
                name,
            )
        if name == "ZRANGE":
            return sorted(value.items(), key=lambda item: item[1])
        if name == "HGETALL":
            return dict(value)
        if name == "SMEMBERS":
            return set(value)
        if name == "LRANGE":
            return list(value)
        return value


def _type_of(value: Any) -> str:
    if isinstance(value, SortedSet):
        return "zset"
    if isinstance(value, dict):
        return "hash"
    if isinstance(value, list):
        return "list"
    if isinstance(value, (set, frozenset)):
        return "set"
    return "string"


class FakeTransport:
    def __init__(self, store: FakeStore, db: int) -> None:
        self.store = store
        self.db = db
        self.closed = False

    async def send(self, command: str, *args: Any) -> Any:
        if self.closed:
            raise connection_lost("transport closed", command)
        name = command.upper()
        if name == "SELECT":
            try:
                index = int(args[0])
            except (TypeError, ValueError) as exc:
                raise StoreFailure(ErrorKind.REJECTED, "invalid DB index", name) from exc
            reply = await self.store.run(self.db, name, args)
            self.db = index
            return reply
        return await self.store.run(self.db, name, args)

    async def close(self) -> None:
        self.closed = True


class FakeConnector:
    """Transport factory for :class:`CommandExecutor` backed by a :class:`FakeStore`."""

    def __init__(self, store: FakeStore) -> None:
        self.store = store
        self.transports: list[FakeTransport] = []
        self.descriptors: list[ConnectionSettings] = []
        self.fail_connects = 0

    async def __call__(self, settings: ConnectionSettings) -> FakeTransport:
        self.descriptors.append(settings)
        if self.fail_connects > 0:
            self.fail_connects -= 1
            raise connection_lost("connection refused", "PING")
        transport = FakeTransport(self.store, settings.db)
        self.transports.append(transport)
        return transport

    @property
    def connects(self) -> int:
        return len(self.transports)
