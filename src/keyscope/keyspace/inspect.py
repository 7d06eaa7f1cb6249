"""On-demand metadata and value lookup for a single selected key."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from keyscope.runtime_logging import get_runtime_logger
from keyscope.store.errors import StoreFailure
from keyscope.store.executor import CommandExecutor, CommandResult
from keyscope.store.replies import to_int, to_text, unwrap_scalar

TYPE_LABELS = {
    "string": "STR",
    "hash": "HSH",
    "list": "LST",
    "set": "SET",
    "zset": "ZST",
    "stream": "STM",
    "hyperloglog": "HLL",
    "bitmap": "BIT",
}

VALUE_COMMANDS: dict[str, tuple[Any, ...]] = {
    "string": ("GET",),
    "hash": ("HGETALL",),
    "list": ("LRANGE", 0, -1),
    "set": ("SMEMBERS",),
    "zset": ("ZRANGE", 0, -1, "WITHSCORES"),
}


def type_label(type_name: str | None) -> str:
    """Three-character badge for a store type name."""
    normalized = (type_name or "").lower()
    if normalized in TYPE_LABELS:
        return TYPE_LABELS[normalized]
    cleaned = re.sub(r"[^a-z0-9]", "", type_name or "UNK", flags=re.IGNORECASE).upper()
    if not cleaned:
        return "UNK"
    return cleaned[:3] if len(cleaned) >= 3 else (cleaned + "___")[:3]


@dataclass(slots=True)
class KeyRecord:
    key: str
    type: str = ""
    ttl: int | None = None
    exists: bool = False
    value: Any = None
    error: str | None = None

    @property
    def label(self) -> str:
        return type_label(self.type)

    @property
    def expires(self) -> bool:
        return self.ttl is not None and self.ttl >= 0


async def inspect_key(executor: CommandExecutor, key: str) -> KeyRecord:
    """Probe TYPE, TTL and EXISTS, then read the value with the command for its type.

    A failed probe leaves its field unset rather than failing the whole record.
    """
    logger = get_runtime_logger()
    record = KeyRecord(key=key)

    type_result = await executor.execute("TYPE", key)
    if type_result.ok:
        record.type = to_text(unwrap_scalar(type_result.value))

    record.ttl = _probe_int(await executor.execute("TTL", key))
    exists = _probe_int(await executor.execute("EXISTS", key))
    record.exists = exists is not None and exists > 0

    if record.type == "none" or (type_result.ok and not record.exists):
        logger.debug("inspect.missing", key=key)
        return record

    command, *extra = VALUE_COMMANDS.get(record.type, ("GET",))
    value_result = await executor.execute(command, key, *extra)
    if value_result.ok:
        record.value = value_result.value
    else:
        assert value_result.error is not None
        record.error = value_result.error.message
    logger.debug("inspect.loaded", key=key, type=record.type, ok=value_result.ok)
    return record


def _probe_int(result: CommandResult) -> int | None:
    if not result.ok:
        return None
    try:
        return to_int(result.value, result.command)
    except StoreFailure:
        return None
