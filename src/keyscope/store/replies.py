"""Normalization of loosely shaped store replies."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from keyscope.store.errors import malformed

END_CURSOR = "0"


def to_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, Mapping) and "value" in value:
        return to_text(value["value"])
    return str(value)


def unwrap_scalar(value: Any) -> Any:
    """Peel single-element list and ``{"value": x}`` wrappers off a scalar reply."""
    while True:
        if isinstance(value, (list, tuple)) and len(value) == 1:
            value = value[0]
        elif isinstance(value, Mapping) and "value" in value:
            value = value["value"]
        else:
            return value


def to_int(value: Any, command: str | None = None) -> int:
    raw = unwrap_scalar(value)
    if isinstance(raw, bool):
        return int(raw)
    if isinstance(raw, int):
        return raw
    try:
        return int(to_text(raw).strip())
    except ValueError as exc:
        raise malformed(f"expected an integer, got {raw!r}", command) from exc


def normalize_key_list(value: Any, command: str | None = None) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (str, bytes)) or not isinstance(value, (list, tuple, set)):
        raise malformed(f"expected a key list, got {type(value).__name__}", command)
    return [to_text(item) for item in value]


def normalize_scan_reply(value: Any) -> tuple[str, list[str]]:
    """Return ``(next_cursor, keys)`` from a positional or keyed SCAN reply."""
    if isinstance(value, (list, tuple)) and len(value) >= 2:
        cursor, keys = value[0], value[1]
    elif isinstance(value, Mapping) and "cursor" in value and "keys" in value:
        cursor, keys = value["cursor"], value["keys"]
    else:
        raise malformed(f"unexpected SCAN reply shape: {type(value).__name__}", "SCAN")

    next_cursor = to_text(cursor).strip()
    if not next_cursor:
        raise malformed("SCAN reply carried an empty cursor", "SCAN")
    return next_cursor, normalize_key_list(keys, "SCAN")
