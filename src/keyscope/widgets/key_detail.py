"""Detail pane for the key selected in the tree."""

from __future__ import annotations

import json

from textual.widgets import Static

from keyscope.keyspace.inspect import KeyRecord


class KeyDetailPanel(Static):
    DEFAULT_CSS = """
    KeyDetailPanel {
        width: 1fr;
        height: 1fr;
        border: round $surface-lighten-2;
        padding: 0 1;
    }
    """

    def __init__(self, *, id: str | None = None) -> None:  # noqa: A002
        self.record: KeyRecord | None = None
        super().__init__("Select a key to inspect it.", id=id, markup=False)

    def show_pending(self, key: str) -> None:
        self.record = None
        self.update(f"{key}\n\nLoading...")

    def show_record(self, record: KeyRecord) -> None:
        self.record = record
        self.update(format_record(record))


def format_record(record: KeyRecord) -> str:
    if record.ttl is None:
        ttl = "unknown"
    elif record.ttl == -1:
        ttl = "no expiry"
    elif record.ttl == -2:
        ttl = "missing"
    else:
        ttl = f"{record.ttl}s"
    lines = [
        record.key,
        "",
        f"type:   {record.type or 'unknown'} [{record.label}]",
        f"ttl:    {ttl}",
        f"exists: {'yes' if record.exists else 'no'}",
        "",
    ]
    if record.error:
        lines.append(f"error: {record.error}")
    elif record.value is not None:
        lines.append(json.dumps(record.value, indent=2, ensure_ascii=False, default=str))
    return "\n".join(lines)
