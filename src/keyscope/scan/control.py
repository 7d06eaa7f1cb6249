"""Session lifecycle gate: pause/resume/abort plus the hard key cap."""

from __future__ import annotations

from typing import Callable, Literal

from keyscope.runtime_logging import get_runtime_logger
from keyscope.scan.events import SessionState

Permit = Literal["go", "paused", "aborted", "capped", "complete"]


class ScanController:
    """Consulted by the scheduler before every batch.

    ``running -> paused -> running`` and ``running -> aborted``; a capped or
    exhausted session ends ``complete``. Aborted is terminal until
    :meth:`reset` starts a new session.
    """

    def __init__(
        self,
        hard_cap: int,
        *,
        on_state_change: Callable[[SessionState], None] | None = None,
        on_capacity: Callable[[int], None] | None = None,
    ) -> None:
        self.hard_cap = hard_cap
        self.state: SessionState = "running"
        self.capped = False
        self.capacity_warned = False
        self._on_state_change = on_state_change
        self._on_capacity = on_capacity
        self.logger = get_runtime_logger()

    @property
    def aborted(self) -> bool:
        return self.state == "aborted"

    def reset(self, hard_cap: int | None = None) -> None:
        if hard_cap is not None:
            self.hard_cap = hard_cap
        self.capped = False
        self.capacity_warned = False
        self._transition("running", force=True)

    def remaining(self, accepted: int) -> int:
        return max(0, self.hard_cap - accepted)

    def permit(self) -> Permit:
        if self.state == "aborted":
            return "aborted"
        if self.state == "paused":
            return "paused"
        if self.capped:
            return "capped"
        if self.state == "complete":
            return "complete"
        return "go"

    def pause(self) -> bool:
        if self.state != "running":
            self.logger.debug("control.pause.ignored", state=self.state)
            return False
        return self._transition("paused")

    def resume(self) -> bool:
        if self.state != "paused":
            self.logger.debug("control.resume.ignored", state=self.state)
            return False
        return self._transition("running")

    def abort(self) -> bool:
        if self.state not in ("running", "paused"):
            self.logger.debug("control.abort.ignored", state=self.state)
            return False
        return self._transition("aborted")

    def complete(self) -> bool:
        if self.state != "running":
            return False
        return self._transition("complete")

    def mark_capped(self) -> None:
        """Record that a key was refused for lack of room and end the session."""
        self.capped = True
        if not self.capacity_warned:
            self.capacity_warned = True
            self.logger.warning("control.capacity.reached", hard_cap=self.hard_cap)
            if self._on_capacity is not None:
                self._on_capacity(self.hard_cap)
        self.complete()

    def _transition(self, state: SessionState, *, force: bool = False) -> bool:
        if self.state == state and not force:
            return False
        previous, self.state = self.state, state
        self.logger.info("control.state", previous=previous, state=state)
        if self._on_state_change is not None:
            self._on_state_change(state)
        return True
