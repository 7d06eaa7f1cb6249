"""Coalescing, de-duplicating buffer between scan batches and consumers."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Callable

FlushSink = Callable[[list[str]], None]


@dataclass(slots=True)
class Admission:
    accepted: list[str] = field(default_factory=list)
    deferred: int = 0

    @property
    def truncated(self) -> bool:
        return self.deferred > 0


class DedupBuffer:
    """Drop keys already seen this session, hold the rest, flush on a timer.

    At most one flush is scheduled at a time, so the sink is called no more
    than once per ``interval_s`` however fast batches arrive.
    """

    def __init__(self, sink: FlushSink, *, interval_s: float = 0.12) -> None:
        self.sink = sink
        self.interval_s = interval_s
        self.flush_count = 0
        self._seen: set[str] = set()
        self._pending: list[str] = []
        self._handle: asyncio.TimerHandle | None = None

    def __contains__(self, key: object) -> bool:
        return key in self._seen

    @property
    def accepted(self) -> int:
        return len(self._seen)

    @property
    def pending(self) -> tuple[str, ...]:
        return tuple(self._pending)

    @property
    def flush_scheduled(self) -> bool:
        return self._handle is not None

    def enqueue(self, keys: Iterable[str], *, limit: int | None = None) -> Admission:
        """Admit unseen keys, at most ``limit`` of them; the rest are deferred."""
        admission = Admission()
        for key in keys:
            if key in self._seen:
                continue
            if limit is not None and len(admission.accepted) >= limit:
                admission.deferred += 1
                continue
            self._seen.add(key)
            admission.accepted.append(key)

        if admission.accepted:
            self._pending.extend(admission.accepted)
            self._schedule()
        return admission

    def flush(self) -> list[str]:
        self._cancel()
        if not self._pending:
            return []
        batch, self._pending = self._pending, []
        self.flush_count += 1
        self.sink(batch)
        return batch

    def discard_pending(self) -> None:
        self._cancel()
        self._pending = []

    def reset(self) -> None:
        self.discard_pending()
        self._seen = set()
        self.flush_count = 0

    def _schedule(self) -> None:
        if self._handle is not None:
            return
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.interval_s, self._on_timer)

    def _on_timer(self) -> None:
        self._handle = None
        self.flush()

    def _cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
