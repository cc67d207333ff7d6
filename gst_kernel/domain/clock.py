"""
Injectable time source.

Engines take ``now`` as an argument and never read the clock.  The
orchestrator and the SQL stores read it from a Clock handed to them, so a
test can pin a reconciliation run, an alert poll or a period close to a
known instant.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone, tzinfo


class Clock(ABC):
    """Source of timezone-aware timestamps."""

    @abstractmethod
    def now(self) -> datetime:
        ...

    def today(self) -> date:
        """Calendar date of ``now()`` in the clock's own timezone."""
        return self.now().date()


class SystemClock(Clock):
    """Wall clock, UTC unless told otherwise."""

    def __init__(self, tz: tzinfo = timezone.utc):
        self._tz = tz

    def now(self) -> datetime:
        return datetime.now(self._tz)


class DeterministicClock(Clock):
    """
    Clock pinned to an instant for tests.

    Repeated ``now()`` calls return the same value until the clock is moved
    with ``advance()`` or ``set_time()``.
    """

    def __init__(self, fixed_time: datetime | None = None):
        if fixed_time is not None and fixed_time.tzinfo is None:
            raise ValueError("DeterministicClock needs a timezone-aware datetime")
        self._current = fixed_time or datetime(2024, 4, 1, 9, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._current

    def set_time(self, time: datetime) -> None:
        if time.tzinfo is None:
            raise ValueError("DeterministicClock needs a timezone-aware datetime")
        self._current = time

    def advance(self, *, days: int = 0, seconds: int = 0) -> None:
        """Move the clock forward, e.g. ``advance(days=3)`` to approach a due date."""
        self._current += timedelta(days=days, seconds=seconds)
