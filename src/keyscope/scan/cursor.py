"""Per-pattern cursor state and the session aggregate that owns it."""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field

from keyscope.store.replies import END_CURSOR

_session_ids = itertools.count(1)


@dataclass(slots=True)
class ScanCursor:
    pattern: str
    cursor: str = END_CURSOR
    reached_end: bool = False
    in_flight: bool = False
    fallback_used: bool = False

    def advance(self, next_cursor: str) -> None:
        self.cursor = next_cursor
        if next_cursor == END_CURSOR:
            self.reached_end = True

    def snapshot(self) -> tuple[str, str, bool]:
        return (self.pattern, self.cursor, self.reached_end)


@dataclass(slots=True)
class ScanSession:
    patterns: tuple[str, ...]
    hard_cap: int
    namespace: int = 0
    cursors: dict[str, ScanCursor] = field(default_factory=dict)
    keys: list[str] = field(default_factory=list)
    loading: bool = False
    capped: bool = False
    session_id: int = field(default_factory=lambda: next(_session_ids))

    @property
    def finished(self) -> bool:
        return all(cursor.reached_end for cursor in self.cursors.values())

    def pending_cursors(self) -> list[ScanCursor]:
        return [c for c in self.cursors.values() if not c.reached_end and not c.in_flight]

    def snapshot(self) -> list[tuple[str, str, bool]]:
        return [cursor.snapshot() for cursor in self.cursors.values()]
