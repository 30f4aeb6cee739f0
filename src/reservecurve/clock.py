"""Clocks read once per operation.

Sale windows and trade deadlines are compared against integer seconds
from an injected clock. Production code uses a monotonic source pinned to
an epoch offset so it never runs backwards when the wall clock is
adjusted; tests and simulations drive a ManualClock.
"""

from __future__ import annotations

import time
from typing import Optional, Protocol


class Clock(Protocol):
    def now(self) -> int: ...


class MonotonicClock:
    """Monotonic seconds, offset so the first reading equals ``start``.

    If ``start`` is omitted the current wall-clock epoch second is used as
    the origin; after that only the monotonic source advances it.
    """

    def __init__(self, start: Optional[int] = None) -> None:
        self._origin = int(time.time()) if start is None else start
        self._base = time.monotonic()

    def now(self) -> int:
        return self._origin + int(time.monotonic() - self._base)


class ManualClock:
    """Clock that only moves when told to.

    Usage:
        clock = ManualClock(1_700_000_000)
        clock.advance(7200)
    """

    def __init__(self, start: int = 0) -> None:
        self._now = start

    def now(self) -> int:
        return self._now

    def advance(self, seconds: int) -> int:
        if seconds < 0:
            raise ValueError("ManualClock cannot move backwards")
        self._now += seconds
        return self._now

    def set(self, timestamp: int) -> None:
        if timestamp < self._now:
            raise ValueError("ManualClock cannot move backwards")
        self._now = timestamp
