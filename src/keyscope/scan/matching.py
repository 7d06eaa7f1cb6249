"""Key matching strategies: store-side MATCH versus client-side glob filtering."""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from typing import Protocol

MATCH_ALL = "*"


def normalize_patterns(patterns: str | Iterable[str] | None) -> tuple[str, ...]:
    """Strip, drop blanks and collapse duplicates; nothing left means match-all."""
    if patterns is None:
        return (MATCH_ALL,)
    if isinstance(patterns, str):
        patterns = [patterns]
    seen: dict[str, None] = {}
    for pattern in patterns:
        cleaned = pattern.strip()
        if cleaned:
            seen.setdefault(cleaned, None)
    return tuple(seen) or (MATCH_ALL,)


def glob_to_regex(pattern: str) -> re.Pattern[str]:
    """Compile a case-sensitive glob where ``*`` is any run and ``?`` one character."""
    parts: list[str] = []
    for char in pattern:
        if char == "*":
            parts.append(".*")
        elif char == "?":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    return re.compile("".join(parts), re.DOTALL)


class KeyMatcher(Protocol):
    def scan_patterns(self, patterns: Sequence[str]) -> tuple[str, ...]:
        """Patterns to send with SCAN MATCH, one cursor each."""
        ...

    def filter(self, keys: Iterable[str]) -> list[str]: ...


class BackendMatcher:
    """The store applies MATCH; every returned key is already a hit."""

    def scan_patterns(self, patterns: Sequence[str]) -> tuple[str, ...]:
        return tuple(patterns)

    def filter(self, keys: Iterable[str]) -> list[str]:
        return list(keys)


class LocalGlobMatcher:
    """Scan everything with ``*`` and keep keys matching any requested pattern."""

    def __init__(self, patterns: Sequence[str]) -> None:
        self.patterns = tuple(patterns)
        self._match_all = MATCH_ALL in self.patterns
        self._compiled = [glob_to_regex(pattern) for pattern in self.patterns]

    def scan_patterns(self, patterns: Sequence[str]) -> tuple[str, ...]:  # noqa: ARG002
        return (MATCH_ALL,)

    def matches(self, key: str) -> bool:
        if self._match_all:
            return True
        return any(regex.fullmatch(key) for regex in self._compiled)

    def filter(self, keys: Iterable[str]) -> list[str]:
        return [key for key in keys if self.matches(key)]


def matcher_for(patterns: Sequence[str], *, local: bool) -> KeyMatcher:
    if local:
        return LocalGlobMatcher(patterns)
    return BackendMatcher()
