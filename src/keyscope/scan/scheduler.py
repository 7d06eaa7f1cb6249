"""Cursor-driven keyspace scanning under concurrency, throttle and cap limits."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Callable

from keyscope.config.models import ScanSettings
from keyscope.keyspace.tree import KeyspaceNode, project_keyspace
from keyscope.runtime_logging import RuntimeLogger, get_runtime_logger
from keyscope.scan.buffer import DedupBuffer
from keyscope.scan.control import Permit, ScanController
from keyscope.scan.cursor import ScanCursor, ScanSession
from keyscope.scan.events import ScanListener, SessionState
from keyscope.scan.matching import MATCH_ALL, KeyMatcher, matcher_for, normalize_patterns
from keyscope.store.errors import ErrorKind, StoreFailure
from keyscope.store.executor import CommandExecutor
from keyscope.store.replies import END_CURSOR, normalize_key_list, normalize_scan_reply, to_int


@dataclass(slots=True)
class TickOutcome:
    launched: int = 0
    accepted: int = 0
    failures: list[StoreFailure] = field(default_factory=list)
    stopped: Permit | None = None

    @property
    def progressed(self) -> bool:
        return self.launched > 0 and not self.failures and self.stopped is None


@dataclass(slots=True)
class _BatchResult:
    cursor: ScanCursor
    requested: str
    next_cursor: str = END_CURSOR
    keys: list[str] = field(default_factory=list)
    failure: StoreFailure | None = None


class ScanScheduler:
    """Drives one cursor per pattern until every cursor reports the end.

    Each tick launches up to ``concurrency`` idle, unfinished cursors at once
    and waits for all of them. Consecutive ticks are spaced by ``throttle_ms``.
    Keys pass through the matcher, then the de-duplicating buffer, and reach
    ``session.keys`` and the listener on each flush.

    The session, its cursors and the seen-key set belong to this object;
    callers get read-only views.
    """

    def __init__(
        self,
        executor: CommandExecutor,
        settings: ScanSettings | None = None,
        *,
        listener: ScanListener | None = None,
        separator: str = ":",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.executor = executor
        self.settings = settings or ScanSettings()
        self.listener = listener or ScanListener()
        self.separator = separator
        self.namespace = executor.descriptor.db
        self.known_size: int | None = None
        self._clock = clock
        self._base_logger = get_runtime_logger()
        self._buffer = DedupBuffer(self._deliver, interval_s=self.settings.flush_interval_ms / 1000)
        self._controller = ScanController(
            self.settings.hard_cap,
            on_state_change=self._emit_state,
            on_capacity=self._emit_capacity,
        )
        self._semaphore = asyncio.Semaphore(self.settings.concurrency)
        self._select_done = asyncio.Event()
        self._select_done.set()
        self._last_tick_at: float | None = None
        self._matcher: KeyMatcher = matcher_for((MATCH_ALL,), local=self.settings.local_filter_enabled)
        self._session = self._new_session((MATCH_ALL,))
        self.logger: RuntimeLogger = self._base_logger.bind(session_id=self._session.session_id)

    # -- read-only views -------------------------------------------------

    @property
    def session(self) -> ScanSession:
        return self._session

    @property
    def keys(self) -> list[str]:
        return list(self._session.keys)

    @property
    def cursors(self) -> list[tuple[str, str, bool]]:
        return self._session.snapshot()

    @property
    def state(self) -> SessionState:
        return self._controller.state

    @property
    def capped(self) -> bool:
        return self._session.capped

    @property
    def selecting(self) -> bool:
        return not self._select_done.is_set()

    def tree(self) -> list[KeyspaceNode]:
        return project_keyspace(self._session.keys, self.separator)

    # -- session control -------------------------------------------------

    async def start_search(self, patterns: str | Iterable[str] | None = None) -> ScanSession:
        normalized = normalize_patterns(patterns)
        await self._select_done.wait()
        self._reset_session(normalized)
        self.logger.info(
            "scan.search",
            patterns=list(normalized),
            local_filter=self.settings.local_filter_enabled,
            namespace=self.namespace,
        )
        await self.load_next_batch()
        return self._session

    async def load_next_batch(self) -> int:
        """Run one tick, continuing through empty ticks when ``auto_continue`` is on.

        Returns the number of keys newly admitted to the session.
        """
        await self._select_done.wait()
        if self._controller.aborted:
            self.logger.debug("scan.load.ignored", reason="aborted")
            return 0
        session = self._session
        if session.loading:
            self.logger.debug("scan.load.ignored", reason="loading")
            return 0

        accepted = 0
        while True:
            outcome = await self._tick(session)
            accepted += outcome.accepted
            if session is not self._session or not outcome.progressed:
                break
            if session.finished or not self.settings.auto_continue or outcome.accepted > 0:
                break
        return accepted

    async def run(self) -> SessionState:
        """Tick until the session completes, stops, or a tick fails."""
        while True:
            await self._select_done.wait()
            if self._controller.aborted:
                break
            session = self._session
            if session.loading:
                self.logger.debug("scan.run.ignored", reason="loading")
                break
            outcome = await self._tick(session)
            if session is not self._session or not outcome.progressed:
                break
        return self.state

    def pause(self) -> bool:
        paused = self._controller.pause()
        if paused:
            self._buffer.flush()
        return paused

    def resume(self) -> bool:
        return self._controller.resume()

    def abort(self) -> bool:
        aborted = self._controller.abort()
        if aborted:
            self._buffer.discard_pending()
        return aborted

    def flush(self) -> list[str]:
        return self._buffer.flush()

    async def select_namespace(self, index: int) -> int | None:
        """Switch namespace, size it, and start a fresh session on it.

        Scan requests arriving meanwhile wait for the switch to finish. An
        :meth:`abort` issued during the switch still holds afterwards: the new
        session starts aborted and only a later :meth:`start_search` resumes
        scanning.
        """
        was_aborted = self._controller.aborted
        self._select_done.clear()
        try:
            result = await self.executor.execute("SELECT", index)
            if result.ok:
                self.namespace = index
            else:
                assert result.error is not None
                self.logger.warning("scan.select.failed", namespace=index, error=result.error.message)
                self._notify("on_error", result.error, False)
            await self.refresh_namespace_size()
        finally:
            restart = was_aborted or not self._controller.aborted
            if not restart:
                self.logger.info("scan.select.aborted", namespace=self.namespace)
            self._reset_session(self._session.patterns, restart=restart)
            self._select_done.set()
        return self.known_size

    async def refresh_namespace_size(self) -> int | None:
        settings = self.executor.settings
        result = await self.executor.execute(
            "DBSIZE",
            timeout=settings.dbsize_timeout_s,
            retries=settings.dbsize_retries,
        )
        try:
            size = to_int(result.unwrap(), "DBSIZE")
        except StoreFailure as failure:
            self.known_size = None
            self.logger.warning("scan.dbsize.failed", namespace=self.namespace, error=failure.message)
            return None
        self.known_size = size
        self.logger.info("scan.dbsize", namespace=self.namespace, size=size)
        self._notify("on_key_count_update", self.namespace, size)
        return size

    # -- internals -------------------------------------------------------

    def _new_session(self, patterns: tuple[str, ...]) -> ScanSession:
        self._matcher = matcher_for(patterns, local=self.settings.local_filter_enabled)
        session = ScanSession(patterns=patterns, hard_cap=self.settings.hard_cap, namespace=self.namespace)
        for pattern in self._matcher.scan_patterns(patterns):
            session.cursors[pattern] = ScanCursor(pattern)
        return session

    def _reset_session(self, patterns: tuple[str, ...], *, restart: bool = True) -> None:
        self._buffer.reset()
        self._session = self._new_session(patterns)
        self._last_tick_at = None
        self.logger = self._base_logger.bind(session_id=self._session.session_id)
        if restart:
            self._controller.reset(self.settings.hard_cap)

    def _gate(self, session: ScanSession) -> Permit | None:
        permit = self._controller.permit()
        if permit != "go":
            if permit == "capped":
                session.capped = True
            if permit != "aborted":
                self._buffer.flush()
            self.logger.debug("scan.tick.stopped", reason=permit)
            return permit
        if session.finished:
            self._finish(session)
            return "complete"
        return None

    async def _tick(self, session: ScanSession) -> TickOutcome:
        stopped = self._gate(session)
        if stopped is not None:
            return TickOutcome(stopped=stopped)

        await self._throttle()
        # Pause or abort may have landed during the throttle wait.
        stopped = self._gate(session)
        if stopped is not None:
            return TickOutcome(stopped=stopped)

        candidates = session.pending_cursors()[: self.settings.concurrency]
        if not candidates:
            return TickOutcome()

        session.loading = True
        for cursor in candidates:
            cursor.in_flight = True
        try:
            results = await asyncio.gather(*(self._scan_one(cursor) for cursor in candidates))
        finally:
            for cursor in candidates:
                cursor.in_flight = False
            session.loading = False
            self._last_tick_at = self._clock()

        if session is not self._session or self._controller.aborted:
            self.logger.debug("scan.tick.discarded", launched=len(candidates))
            return TickOutcome(launched=len(candidates), stopped="aborted")
        return self._apply(session, results)

    async def _throttle(self) -> None:
        if self._last_tick_at is None or self.settings.throttle_ms <= 0:
            return
        remaining = self.settings.throttle_ms / 1000 - (self._clock() - self._last_tick_at)
        if remaining > 0:
            await asyncio.sleep(remaining)

    async def _scan_one(self, cursor: ScanCursor) -> _BatchResult:
        requested = cursor.cursor
        async with self._semaphore:
            result = await self.executor.execute(
                "SCAN",
                requested,
                "MATCH",
                cursor.pattern,
                "COUNT",
                self.settings.count_per_batch,
            )
        if result.error is not None:
            return _BatchResult(cursor, requested, failure=result.error)

        try:
            next_cursor, keys = normalize_scan_reply(result.value)
        except StoreFailure as failure:
            self.logger.warning("scan.reply.malformed", pattern=cursor.pattern, error=failure.message)
            return _BatchResult(cursor, requested, failure=failure)

        if not keys and next_cursor == END_CURSOR and requested == END_CURSOR and not cursor.fallback_used:
            keys = await self._fallback(cursor)
        return _BatchResult(cursor, requested, next_cursor=next_cursor, keys=keys)

    async def _fallback(self, cursor: ScanCursor) -> list[str]:
        """List the pattern with KEYS once, only on a keyspace known to be small."""
        cursor.fallback_used = True
        threshold = self.settings.safe_fallback_threshold
        if self.known_size is None:
            self.logger.debug("scan.fallback.skipped", pattern=cursor.pattern, reason="size unknown")
            return []
        if self.known_size > threshold:
            message = (
                f"Not listing '{cursor.pattern}' with KEYS: namespace {self.namespace} holds "
                f"{self.known_size} keys, above the safe limit of {threshold}."
            )
            self.logger.warning(
                "scan.fallback.refused",
                pattern=cursor.pattern,
                size=self.known_size,
                threshold=threshold,
            )
            self._notify("on_advisory", message)
            return []

        async with self._semaphore:
            result = await self.executor.execute("KEYS", cursor.pattern)
        try:
            keys = normalize_key_list(result.unwrap(), "KEYS")
        except StoreFailure as failure:
            self.logger.warning("scan.fallback.failed", pattern=cursor.pattern, error=failure.message)
            return []
        self.logger.info("scan.fallback", pattern=cursor.pattern, key_count=len(keys))
        return keys

    def _apply(self, session: ScanSession, results: list[_BatchResult]) -> TickOutcome:
        outcome = TickOutcome(launched=len(results))

        for item in results:
            if item.failure is not None and item.failure.kind is ErrorKind.CONNECTION_LOST:
                self._terminate(item.failure)

        for item in results:
            if item.failure is not None:
                outcome.failures.append(item.failure)
                self._notify("on_error", item.failure, False)
                continue

            matched = self._matcher.filter(item.keys)
            admission = self._buffer.enqueue(
                matched,
                limit=self._controller.remaining(self._buffer.accepted),
            )
            outcome.accepted += len(admission.accepted)
            if admission.truncated:
                # Keep the cursor so the deferred keys are fetched again on a later pass.
                session.capped = True
            else:
                item.cursor.advance(item.next_cursor)
            self.logger.debug(
                "scan.batch",
                pattern=item.cursor.pattern,
                cursor=item.requested,
                next_cursor=item.cursor.cursor,
                returned=len(item.keys),
                accepted=len(admission.accepted),
                deferred=admission.deferred,
            )

        if session.finished:
            self._finish(session)
        elif session.capped:
            # Reaching the cap exactly is not enough; a key must have been refused.
            self._buffer.flush()
            self._controller.mark_capped()
        return outcome

    def _terminate(self, failure: StoreFailure) -> None:
        self.logger.error("scan.aborted", error=failure.message, command=failure.command)
        self._buffer.discard_pending()
        self._controller.abort()
        self._notify("on_error", failure, True)
        raise failure

    def _finish(self, session: ScanSession) -> None:
        self._buffer.flush()
        if self._controller.complete():
            self.logger.info("scan.complete", key_count=len(session.keys), capped=session.capped)

    def _deliver(self, batch: list[str]) -> None:
        self._session.keys.extend(batch)
        self._notify("on_batch", list(batch))

    def _emit_state(self, state: SessionState) -> None:
        self._notify("on_session_state_change", state)

    def _emit_capacity(self, hard_cap: int) -> None:
        self._notify("on_capacity_warning", hard_cap)

    def _notify(self, name: str, *args: Any) -> None:
        try:
            getattr(self.listener, name)(*args)
        except Exception as exc:
            self.logger.error("scan.listener.failed", callback=name, error=str(exc))
