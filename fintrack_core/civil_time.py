"""
Budget Calendar Helpers

All budget periods live in one fixed civil calendar (UTC+7 by default,
no daylight saving). Every comparison between a transaction and a
budget period goes through these helpers so the boundary day is the
same for every tab regardless of the host's local timezone.
"""

from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Optional, Union

from fintrack_core.config import get_settings


def calendar_timezone(offset_hours: Optional[int] = None) -> tzinfo:
    """The fixed-offset timezone of the budget calendar."""
    if offset_hours is None:
        offset_hours = get_settings().calendar.utc_offset_hours
    return timezone(timedelta(hours=offset_hours))


def to_calendar(instant: datetime, tz: Optional[tzinfo] = None) -> datetime:
    """
    Express an instant in the budget calendar.

    Naive datetimes are taken as wall-clock time already in the calendar.
    """
    tz = tz or calendar_timezone()
    if instant.tzinfo is None:
        return instant.replace(tzinfo=tz)
    return instant.astimezone(tz)


def to_calendar_date(value: Union[datetime, date], tz: Optional[tzinfo] = None) -> date:
    """The civil date a transaction belongs to."""
    if isinstance(value, datetime):
        return to_calendar(value, tz).date()
    return value


def start_of_day(day: date, tz: Optional[tzinfo] = None) -> datetime:
    return datetime.combine(day, time(0, 0, 0), tzinfo=tz or calendar_timezone())


def end_of_day(day: date, tz: Optional[tzinfo] = None) -> datetime:
    return datetime.combine(day, time(23, 59, 59), tzinfo=tz or calendar_timezone())


def format_calendar_date(instant: Union[datetime, date], tz: Optional[tzinfo] = None) -> str:
    """Format as YYYY-MM-DD in the budget calendar."""
    return to_calendar_date(instant, tz).isoformat()
