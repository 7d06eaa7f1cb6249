"""Consumer-facing scan notifications."""

from __future__ import annotations

from typing import Literal

from keyscope.store.errors import StoreFailure

SessionState = Literal["running", "paused", "aborted", "complete"]


class ScanListener:
    """Receives scan notifications. Subclass and override what you need.

    Callbacks run on the event loop, synchronously, and must not block.
    """

    def on_batch(self, keys: list[str]) -> None:  # noqa: ARG002
        return

    def on_key_count_update(self, namespace: int, count: int) -> None:  # noqa: ARG002
        return

    def on_session_state_change(self, state: SessionState) -> None:  # noqa: ARG002
        return

    def on_capacity_warning(self, hard_cap: int) -> None:  # noqa: ARG002
        return

    def on_advisory(self, message: str) -> None:  # noqa: ARG002
        return

    def on_error(self, failure: StoreFailure, terminal: bool) -> None:  # noqa: ARG002
        return
