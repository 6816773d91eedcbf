"""Clock sources used for due-date and lock-period comparisons.

Every service reads time from one injected :class:`Clock`. Callers never pass
timestamps in, so all due-date and lock checks agree with each other.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
import logging
import threading
from typing import Optional


logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    """Return current UTC timestamp."""
    return datetime.now(timezone.utc)


class Clock(ABC):
    """Source of the current time for the credit core."""

    @abstractmethod
    def now(self) -> datetime:
        """Return the current timezone-aware UTC time."""


class SystemClock(Clock):
    """Wall clock that never reports a time earlier than one it already returned."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._last: Optional[datetime] = None

    def now(self) -> datetime:
        with self._lock:
            current = utc_now()
            if self._last is not None and current < self._last:
                logger.warning("System clock moved backwards; holding at %s", self._last.isoformat())
                current = self._last
            self._last = current
            return current


class FixedClock(Clock):
    """Manually driven clock for tests and simulations."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self._lock = threading.Lock()
        self._current = start or datetime(2024, 1, 1, tzinfo=timezone.utc)
        if self._current.tzinfo is None:
            raise ValueError("FixedClock requires a timezone-aware start time")

    def now(self) -> datetime:
        with self._lock:
            return self._current

    def advance(self, days: int = 0, seconds: int = 0) -> datetime:
        """Move the clock forward and return the new time."""
        if days < 0 or seconds < 0:
            raise ValueError("FixedClock cannot move backwards")
        with self._lock:
            self._current = self._current + timedelta(days=days, seconds=seconds)
            return self._current

    def set(self, moment: datetime) -> datetime:
        """Jump to an absolute time that is not earlier than the current one."""
        with self._lock:
            if moment < self._current:
                raise ValueError("FixedClock cannot move backwards")
            self._current = moment
            return self._current
