"""Discovery of logical namespaces (numbered databases) and their sizes."""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from keyscope.runtime_logging import get_runtime_logger
from keyscope.store.errors import StoreFailure
from keyscope.store.executor import CommandExecutor
from keyscope.store.replies import to_int, to_text, unwrap_scalar

_DB_NAME = re.compile(r"db(\d+)", re.IGNORECASE)
_KEYSPACE_LINE = re.compile(r"^db(\d+):\s*keys=(\d+)", re.IGNORECASE)


@dataclass(slots=True)
class NamespaceInfo:
    index: int
    key_count: int

    @property
    def name(self) -> str:
        return f"db{self.index}"


def parse_namespace(value: str | int) -> int:
    """``"db3"`` and ``"3"`` both mean namespace 3; anything else means 0."""
    if isinstance(value, int):
        return max(value, 0)
    text = value.strip()
    match = _DB_NAME.search(text)
    if match:
        return int(match.group(1))
    return int(text) if text.isdigit() else 0


def parse_keyspace_info(info: Any) -> list[NamespaceInfo]:
    """Read ``INFO keyspace`` in either raw text or pre-parsed mapping form."""
    items: dict[int, int] = {}
    info = unwrap_scalar(info)
    if isinstance(info, Mapping):
        for name, stats in info.items():
            match = _DB_NAME.fullmatch(to_text(name))
            if match is None:
                continue
            if isinstance(stats, Mapping):
                count = stats.get("keys", 0)
            else:
                line = _KEYSPACE_LINE.match(f"{to_text(name)}:{to_text(stats)}")
                count = line.group(2) if line else 0
            items[int(match.group(1))] = int(count)
    else:
        for line in to_text(info).splitlines():
            match = _KEYSPACE_LINE.match(line.strip())
            if match:
                items[int(match.group(1))] = int(match.group(2))
    return [NamespaceInfo(index=index, key_count=count) for index, count in sorted(items.items())]


async def list_namespaces(executor: CommandExecutor, current: int = 0) -> list[NamespaceInfo]:
    logger = get_runtime_logger()
    result = await executor.execute("INFO", "keyspace")
    if result.ok:
        namespaces = parse_keyspace_info(result.value)
        if namespaces:
            return namespaces
        logger.debug("namespaces.info.empty")

    # Empty stores report no keyspace section at all; size the current one.
    size_result = await executor.execute("DBSIZE")
    try:
        count = to_int(size_result.unwrap(), "DBSIZE")
    except StoreFailure as failure:
        logger.warning("namespaces.dbsize.failed", error=failure.message)
        return []
    return [NamespaceInfo(index=current, key_count=count)]
