"""
Time sources for staking pools.

Pools and the registry read the current time through a clock object so
that accrual can be driven by wall-clock time in production and by an
explicitly advanced clock in tests and simulations.
"""

import threading
import time


class SystemClock:
    """Wall-clock time in whole seconds since the epoch."""

    def now(self) -> int:
        return int(time.time())

    def __call__(self) -> int:
        return self.now()


class ManualClock:
    """
    Clock that only moves when told to.

    Usage:
        clock = ManualClock(start=1_700_000_000)
        clock.advance(3600)
        clock.warp(1_700_086_400)
    """

    def __init__(self, start: int | None = None):
        self._now = int(time.time()) if start is None else int(start)
        self._lock = threading.Lock()

    def now(self) -> int:
        with self._lock:
            return self._now

    def __call__(self) -> int:
        return self.now()

    def advance(self, seconds: int) -> int:
        """Move forward by `seconds` and return the new time."""
        if seconds < 0:
            raise ValueError("Clock cannot move backwards")
        with self._lock:
            self._now += int(seconds)
            return self._now

    def warp(self, timestamp: int) -> int:
        """Jump to an absolute timestamp (never backwards)."""
        with self._lock:
            if timestamp < self._now:
                raise ValueError(f"Cannot warp backwards from {self._now} to {timestamp}")
            self._now = int(timestamp)
            return self._now
