"""Human-readable sizes and durations, and a console progress meter for downloads."""

from __future__ import annotations

import sys
import time
from typing import Optional, TextIO

_UNITS = ("KB", "MB", "GB", "TB", "PB")
_NS_PER_SECOND = 1_000_000_000


def human_bytes(n: int) -> str:
    """Format a byte count with a binary unit and one decimal place."""
    if n < 1024:
        return f"{n} B"
    div, exp = 1024, 0
    m = n // 1024
    while m >= 1024 and exp < len(_UNITS) - 1:
        div *= 1024
        exp += 1
        m //= 1024
    return f"{n / div:.1f} {_UNITS[exp]}"


def human_duration(remaining: int, speed: float) -> str:
    """Estimate the time needed for ``remaining`` bytes at ``speed`` bytes per second."""
    if speed <= 0:
        return "?"
    nanoseconds = int(remaining / speed * _NS_PER_SECOND)
    if nanoseconds < _NS_PER_SECOND:
        return "<1s"
    seconds = nanoseconds // _NS_PER_SECOND
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m{seconds % 60}s"
    return f"{seconds // 3600}h{(seconds // 60) % 60}m"


class ProgressWriter:
    """A write-only sink that counts bytes and reports progress on a text stream.

    Reports are throttled to one every ``interval`` seconds; ``finish`` always
    prints a final report followed by a newline.
    """

    interval = 0.2

    def __init__(self, total: int, label: str, stream: Optional[TextIO] = None) -> None:
        self.total = total
        self.label = label
        self.stream = stream if stream is not None else sys.stdout
        self.written = 0
        now = time.monotonic()
        self._start = now
        self._last_print = now

    def write(self, data: bytes) -> int:
        size = len(data)
        self.written += size
        self._maybe_print(force=False)
        return size

    def finish(self) -> None:
        self._maybe_print(force=True)
        self.stream.write("\n")
        self.stream.flush()

    def _maybe_print(self, force: bool) -> None:
        now = time.monotonic()
        if not force and now - self._last_print < self.interval:
            return
        self._last_print = now

        elapsed = now - self._start
        if elapsed <= 0:
            elapsed = 0.001
        speed = self.written / elapsed

        if self.total > 0:
            remaining = max(self.total - self.written, 0)
            eta = human_duration(remaining, speed)
            percent = self.written / self.total * 100
            line = (
                f"\r{self.label}: {human_bytes(self.written)}/{human_bytes(self.total)} "
                f"({percent:.1f}%, {human_bytes(int(speed))}/s, eta {eta})"
            )
        else:
            line = (
                f"\r{self.label}: {human_bytes(self.written)} "
                f"(unknown total, {human_bytes(int(speed))}/s)"
            )
        self.stream.write(line)
        self.stream.flush()