"""Glob pattern compilation shared by scan filters and priority rules."""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Iterable, Pattern

from fdedupe.config.exceptions import PatternError


class GlobPattern:
    """A compiled glob pattern.

    ``*`` and ``?`` also match the path separator, ``**/`` matches zero or
    more leading directories, ``[...]`` / ``[!...]`` are character classes and
    ``{a,b}`` is alternation. Matching always covers the whole text.
    """

    __slots__ = ("pattern", "_regex")

    def __init__(self, pattern: str) -> None:
        self.pattern = pattern
        self._regex = _compile(pattern)

    def matches(self, text: str) -> bool:
        """Return True when ``text`` matches the whole pattern."""
        return self._regex.fullmatch(text) is not None

    def __repr__(self) -> str:
        return f"GlobPattern({self.pattern!r})"


class GlobSet:
    """A set of glob patterns; matches when any member matches."""

    def __init__(self, patterns: Iterable[str] = ()) -> None:
        self._patterns = tuple(GlobPattern(pattern) for pattern in patterns)

    def __bool__(self) -> bool:
        return bool(self._patterns)

    def __len__(self) -> int:
        return len(self._patterns)

    def matches(self, text: str) -> bool:
        return any(pattern.matches(text) for pattern in self._patterns)


def validate_pattern(pattern: str) -> str:
    """Return ``pattern`` unchanged or raise PatternError when malformed."""
    _compile(pattern)
    return pattern


@lru_cache(maxsize=512)
def _compile(pattern: str) -> Pattern[str]:
    if not isinstance(pattern, str) or not pattern:
        raise PatternError("Glob pattern must be a non-empty string.")
    try:
        return re.compile(translate(pattern))
    except re.error as exc:
        raise PatternError(f"Invalid glob pattern {pattern!r}: {exc}") from exc


def translate(pattern: str) -> str:
    """Translate a glob pattern into a regular expression string."""
    out: list[str] = []
    depth = 0
    i, n = 0, len(pattern)
    while i < n:
        char = pattern[i]
        if char == "*":
            if pattern.startswith("**/", i) and (i == 0 or pattern[i - 1] == "/"):
                out.append("(?:.*/)?")
                i += 3
                continue
            while i < n and pattern[i] == "*":
                i += 1
            out.append(".*")
            continue
        if char == "?":
            out.append(".")
        elif char == "[":
            j = i + 1
            if j < n and pattern[j] in "!^":
                j += 1
            if j < n and pattern[j] == "]":
                j += 1
            while j < n and pattern[j] != "]":
                j += 1
            if j >= n:
                raise PatternError(f"Unclosed character class in glob pattern {pattern!r}.")
            body = pattern[i + 1 : j]
            negate = body[:1] in ("!", "^")
            if negate:
                body = body[1:]
            body = body.replace("\\", "\\\\").replace("[", "\\[")
            out.append(f"[^{body}]" if negate else f"[{body}]")
            i = j
        elif char == "{":
            depth += 1
            out.append("(?:")
        elif char == "}" and depth:
            depth -= 1
            out.append(")")
        elif char == "," and depth:
            out.append("|")
        elif char == "\\":
            if i + 1 >= n:
                raise PatternError(f"Dangling escape in glob pattern {pattern!r}.")
            out.append(re.escape(pattern[i + 1]))
            i += 1
        else:
            out.append(re.escape(char))
        i += 1

    if depth:
        raise PatternError(f"Unclosed alternation in glob pattern {pattern!r}.")
    return "(?s:" + "".join(out) + ")"


__all__ = ["GlobPattern", "GlobSet", "translate", "validate_pattern"]
