"""Textual message objects for widget/app coordination."""

from __future__ import annotations

from textual.message import Message


class InspectKey(Message):
    def __init__(self, *, key: str) -> None:
        self.key = key
        super().__init__()


class SelectNamespace(Message):
    def __init__(self, *, index: int) -> None:
        self.index = index
        super().__init__()
