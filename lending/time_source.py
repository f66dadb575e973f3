"""
time_source.py - Injected clock implementations

The registry and enforcer never read a hidden global clock. They call
time_source.now(), which returns integer seconds since the epoch.

Classes:
- FixedTimeSource: always returns the same instant
- ManualClock: monotonic clock advanced explicitly (simulations, tests)
- SystemTimeSource: wall clock via time.time()
"""

import time

from .core import Timestamp, check_uint


class FixedTimeSource:
    """Time source frozen at a single instant."""

    def __init__(self, timestamp: Timestamp):
        self.timestamp = check_uint("timestamp", timestamp)

    def now(self) -> Timestamp:
        return self.timestamp

    def __repr__(self):
        return f"FixedTimeSource({self.timestamp})"


class ManualClock:
    """
    Logical clock that only moves when told to.

    Time can only move forward, never backward.
    """

    def __init__(self, start: Timestamp = 0):
        self._now = check_uint("start", start)

    def now(self) -> Timestamp:
        return self._now

    def advance_time(self, new_time: Timestamp) -> None:
        """
        Move the clock to new_time.

        Raises:
            ValueError: If new_time is before the current time
        """
        check_uint("new_time", new_time)
        if new_time < self._now:
            raise ValueError(f"Cannot move time backwards: {new_time} < {self._now}")
        self._now = new_time

    def advance_by(self, seconds: int) -> Timestamp:
        """Advance by a number of seconds and return the new time."""
        self.advance_time(self._now + check_uint("seconds", seconds))
        return self._now

    def __repr__(self):
        return f"ManualClock({self._now})"


class SystemTimeSource:
    """Wall-clock time source, truncated to whole seconds."""

    def now(self) -> Timestamp:
        return int(time.time())

    def __repr__(self):
        return "SystemTimeSource()"
