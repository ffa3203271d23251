# pharmacy_inventory/utils/date_utils.py
from datetime import date, datetime, timedelta
from typing import Optional, Union
import math


class SystemClock:
    """Clock reading the wall time at call time."""

    def now(self) -> datetime:
        return datetime.now()

    def today(self) -> date:
        return self.now().date()


class FixedClock(SystemClock):
    """Clock frozen at a given moment, used for deterministic expiry checks."""

    def __init__(self, moment: Union[date, datetime]):
        self.moment = convert_to_datetime(moment)

    def now(self) -> datetime:
        return self.moment

    def advance(self, days: int = 0, **kwargs) -> None:
        """Move the clock forward."""
        self.moment = self.moment + timedelta(days=days, **kwargs)


def convert_to_date(value: Union[str, date, datetime, None]) -> Optional[date]:
    """Convert a value to a date.

    Args:
        value: ISO-8601 string, date or datetime

    Returns:
        Date object or None if value is empty
    """
    if value is None or value == '':
        return None

    if isinstance(value, datetime):
        return value.date()

    if isinstance(value, date):
        return value

    if isinstance(value, str):
        # Accept full timestamps as well as plain dates
        return date.fromisoformat(value[:10])

    raise ValueError(f"Cannot convert {value!r} to date")


def convert_to_datetime(value: Union[str, date, datetime, None]) -> Optional[datetime]:
    """Convert a value to a datetime (dates become midnight)."""
    if value is None or value == '':
        return None

    if isinstance(value, datetime):
        return value

    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)

    if isinstance(value, str):
        return datetime.fromisoformat(value)

    raise ValueError(f"Cannot convert {value!r} to datetime")


def days_between(start: Union[date, datetime], end: Union[date, datetime]) -> int:
    """Whole days from start to end, rounding partial days up.

    Args:
        start: Start date or datetime
        end: End date or datetime

    Returns:
        ceil((end - start) / 1 day); negative when end is before start
    """
    if isinstance(start, datetime) or isinstance(end, datetime):
        delta = convert_to_datetime(end) - convert_to_datetime(start)
        return math.ceil(delta.total_seconds() / 86400)

    return (end - start).days


def add_days(base_date: date, days: int) -> date:
    """Add days to a date."""
    return base_date + timedelta(days=days)
