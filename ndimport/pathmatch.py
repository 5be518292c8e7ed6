"""Glob matching for slash-separated relative paths, with ``**`` and braces.

``*`` and ``?`` never cross a ``/``; a ``**`` path component matches zero or
more whole components, so ``dir/**`` matches ``dir`` itself and everything
below it. Character classes (``[a-z]``, ``[!x]``, ``[^x]``), alternatives
(``{a,b}``) and backslash escapes are supported.
"""

from __future__ import annotations

import re
from functools import lru_cache


class PatternError(ValueError):
    """The glob pattern is malformed."""


def match(pattern: str, name: str) -> bool:
    """Report whether the slash-separated ``name`` matches ``pattern``."""
    return _compile(pattern).fullmatch(name) is not None


@lru_cache(maxsize=256)
def _compile(pattern: str) -> re.Pattern:
    return re.compile(_Translator(pattern).translate(), re.DOTALL)


class _Translator:
    def __init__(self, pattern: str) -> None:
        self._p = pattern
        self._i = 0

    def translate(self) -> str:
        return self._sequence(in_brace=False)

    def _error(self, reason: str) -> None:
        raise PatternError(f"syntax error in pattern {self._p!r}: {reason}")

    def _sequence(self, in_brace: bool) -> str:
        p = self._p
        out: list[str] = []
        while self._i < len(p):
            c = p[self._i]
            if in_brace and c in ",}":
                break
            if c == "\\":
                self._i += 1
                if self._i >= len(p):
                    self._error("trailing backslash")
                out.append(re.escape(p[self._i]))
                self._i += 1
            elif c == "*":
                self._star(out, in_brace)
            elif c == "?":
                out.append("[^/]")
                self._i += 1
            elif c == "[":
                out.append(self._char_class())
            elif c == "{":
                out.append(self._alternatives())
            else:
                out.append(re.escape(c))
                self._i += 1
        return "".join(out)

    def _star(self, out: list[str], in_brace: bool) -> None:
        p = self._p
        start = end = self._i
        while end < len(p) and p[end] == "*":
            end += 1
        self._i = end

        at_start = start == 0 or p[start - 1] in "/{,"
        at_end = end == len(p) or p[end] == "/" or (in_brace and p[end] in ",}")
        if end - start >= 2 and at_start and at_end:
            if end < len(p) and p[end] == "/":
                out.append("(?:.*/)?")
                self._i = end + 1
            elif out and out[-1] == "/":
                out[-1] = "(?:/.*)?"
            else:
                out.append(".*")
        else:
            out.append("[^/]*")

    def _char_class(self) -> str:
        p = self._p
        self._i += 1
        negate = self._i < len(p) and p[self._i] in "!^"
        if negate:
            self._i += 1
        items: list[str] = []
        while True:
            if self._i >= len(p):
                self._error("unclosed character class")
            if p[self._i] == "]":
                if not items:
                    self._error("empty character class")
                self._i += 1
                break
            low = self._class_char()
            if self._i + 1 < len(p) and p[self._i] == "-" and p[self._i + 1] != "]":
                self._i += 1
                high = self._class_char()
                if high < low:
                    self._error(f"bad range {low}-{high}")
                items.append(f"{re.escape(low)}-{re.escape(high)}")
            else:
                items.append(re.escape(low))
        body = "".join(items)
        return f"[^/{body}]" if negate else f"(?!/)[{body}]"

    def _class_char(self) -> str:
        p = self._p
        c = p[self._i]
        if c == "\\":
            self._i += 1
            if self._i >= len(p):
                self._error("trailing backslash")
            c = p[self._i]
        self._i += 1
        return c

    def _alternatives(self) -> str:
        self._i += 1
        alternatives: list[str] = []
        while True:
            alternatives.append(self._sequence(in_brace=True))
            if self._i >= len(self._p):
                self._error("unclosed brace")
            separator = self._p[self._i]
            self._i += 1
            if separator == "}":
                break
        return "(?:" + "|".join(alternatives) + ")"