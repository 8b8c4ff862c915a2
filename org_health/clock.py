"""
Organization Health - Clock.

============================================================
RESPONSIBILITY
============================================================
Testable clock abstraction for snapshot timestamps.

- UTC only
- Mockable for deterministic trend / idempotency tests

============================================================
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone
from typing import Optional
import threading


class ClockProtocol(ABC):
    """Source of snapshot timestamps and the organization-day key."""

    @abstractmethod
    def now(self) -> datetime:
        """Get current UTC datetime."""

    def today(self) -> date:
        """Get current UTC date."""
        return self.now().date()


class SystemClock(ClockProtocol):
    """Wall-clock UTC time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class MockClock(ClockProtocol):
    """
    Settable clock for tests.

    Same-day reruns, next-day runs and trend windows are simulated
    by moving this clock instead of sleeping.
    """

    def __init__(self, initial_time: Optional[datetime] = None):
        self._time = _aware(initial_time or datetime.now(timezone.utc))
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._time

    def set_time(self, new_time: datetime) -> None:
        with self._lock:
            self._time = _aware(new_time)

    def advance(self, seconds: float = 0, **kwargs) -> None:
        """
        Move the clock forward.

        Args:
            seconds: Seconds to add
            **kwargs: Extra timedelta fields (hours=1, days=1)
        """
        with self._lock:
            self._time = self._time + timedelta(seconds=seconds, **kwargs)


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
