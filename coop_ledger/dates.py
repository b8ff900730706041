"""
Date Utilities Module

Calendar month arithmetic and the clock collaborator. Every "now" and
"today" in the engine comes from a Clock so operations can be replayed
deterministically.
"""

from abc import ABC, abstractmethod
from datetime import datetime, date, timezone, timedelta
from typing import Optional, Union
import calendar


DateLike = Union[date, datetime, str]


def add_months(start_date: date, months: int) -> date:
    """Add months to a date, clamping the day to the target month's last day"""
    month = start_date.month - 1 + months
    year = start_date.year + month // 12
    month = month % 12 + 1
    day = min(start_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def parse_date(value: DateLike) -> date:
    """Accept a date, a datetime or an ISO string and return a date"""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        # Full ISO timestamps are accepted too
        return date.fromisoformat(value[:10])
    raise ValueError(f"Invalid date: {value!r}")


def parse_datetime(value: Union[datetime, str]) -> datetime:
    """Parse an ISO timestamp, assuming UTC for naive values"""
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def periods_elapsed(start_date: date, today: date, period_days: int = 30) -> int:
    """Whole periods of `period_days` between two dates (never negative)"""
    days = (today - start_date).days
    if days <= 0:
        return 0
    return days // period_days


class Clock(ABC):
    """Source of the current time"""

    @abstractmethod
    def now(self) -> datetime:
        """Current instant as an aware UTC datetime"""
        pass

    def today(self) -> date:
        """Current calendar date"""
        return self.now().date()


class SystemClock(Clock):
    """Wall clock"""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    """
    Settable clock for tests and deterministic replay.

    Each call to now() returns the configured instant; use advance() to move
    it forward.
    """

    def __init__(self, moment: Optional[DateLike] = None):
        self._moment = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        if moment is not None:
            self.set(moment)

    def set(self, moment: DateLike) -> None:
        if isinstance(moment, datetime):
            self._moment = parse_datetime(moment)
        else:
            day = parse_date(moment)
            self._moment = datetime(day.year, day.month, day.day, 12, 0, tzinfo=timezone.utc)

    def advance(self, days: int = 0, months: int = 0, seconds: int = 0) -> datetime:
        if months:
            moved = add_months(self._moment.date(), months)
            self._moment = self._moment.replace(year=moved.year, month=moved.month, day=moved.day)
        self._moment = self._moment + timedelta(days=days, seconds=seconds)
        return self._moment

    def now(self) -> datetime:
        return self._moment
