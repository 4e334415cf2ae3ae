"""
Time source for the ledger and the fulfillment engines.

Three things read the current time: stock status (an item past its
expiration date is expired), document numbers (``ORD-YYYYMM-NNNN`` takes
the month of creation) and the status timestamps on orders and purchases.
All of them take a ``Clock`` in their constructor; production code uses
``SystemClock`` and tests pin the calendar with ``DeterministicClock``.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone

# Mid-month, so a test can move a few days either way without changing
# the document-number month.
DEFAULT_TEST_TIME = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """``now()`` is timezone-aware UTC; ``today()`` is its calendar date."""

    @abstractmethod
    def now(self) -> datetime: ...

    def today(self) -> date:
        return self.now().date()


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """Stands still until ``set_time`` or ``advance`` moves it."""

    def __init__(self, start: datetime = DEFAULT_TEST_TIME):
        self._current = self._checked(start)

    @staticmethod
    def _checked(moment: datetime) -> datetime:
        if moment.tzinfo is None:
            raise ValueError(f"Clock time must be timezone-aware, got {moment!r}")
        return moment.astimezone(timezone.utc)

    def now(self) -> datetime:
        return self._current

    def set_time(self, moment: datetime) -> None:
        self._current = self._checked(moment)

    def advance(self, *, days: int = 0, hours: int = 0, seconds: int = 0) -> datetime:
        """Move forward and return the new time.  Moving backwards is refused."""
        step = timedelta(days=days, hours=hours, seconds=seconds)
        if step < timedelta(0):
            raise ValueError(f"Clock cannot move backwards ({step})")
        self._current += step
        return self._current
