"""Closed failure taxonomy for remote store commands."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ErrorKind(str, Enum):
    TRANSIENT = "transient"
    CONNECTION_LOST = "connection_lost"
    MALFORMED_REPLY = "malformed_reply"
    CAPACITY = "capacity"
    REJECTED = "rejected"

    @property
    def retryable(self) -> bool:
        return self is ErrorKind.TRANSIENT


@dataclass(slots=True)
class StoreFailure(Exception):
    kind: ErrorKind
    message: str
    command: str | None = None

    def __str__(self) -> str:
        if self.command:
            return f"{self.command} failed ({self.kind.value}): {self.message}"
        return f"{self.kind.value}: {self.message}"


def transient(message: str, command: str | None = None) -> StoreFailure:
    return StoreFailure(ErrorKind.TRANSIENT, message, command)


def connection_lost(message: str, command: str | None = None) -> StoreFailure:
    return StoreFailure(ErrorKind.CONNECTION_LOST, message, command)


def malformed(message: str, command: str | None = None) -> StoreFailure:
    return StoreFailure(ErrorKind.MALFORMED_REPLY, message, command)
