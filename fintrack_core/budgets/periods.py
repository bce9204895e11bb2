"""
Period Calculator

Budget period boundaries in the fixed budget calendar.

DESIGN DECISION: A computed period never lies entirely in the past. If
the caller's year/month/reference produces a period whose end precedes
the start of today, the period is recomputed around "now". Forms that
pre-fill last month's dates therefore still create a usable budget.
"""

import calendar
from datetime import date, datetime, timedelta, tzinfo
from typing import Optional, Union

from fintrack_core.civil_time import (
    calendar_timezone,
    end_of_day,
    start_of_day,
    to_calendar,
    to_calendar_date,
)
from fintrack_core.clock import Clock, SystemClock
from fintrack_core.models.budget import PeriodType
from fintrack_core.models.cache import Period


def now_in_calendar(clock: Optional[Clock] = None, tz: Optional[tzinfo] = None) -> datetime:
    """Current instant expressed in the budget calendar."""
    clock = clock or SystemClock()
    return to_calendar(clock.now(), tz or calendar_timezone())


def monthly_period(year: int, month: int, tz: Optional[tzinfo] = None) -> Period:
    last_day = calendar.monthrange(year, month)[1]
    return Period(
        start=start_of_day(date(year, month, 1), tz),
        end=end_of_day(date(year, month, last_day), tz),
    )


def yearly_period(year: int, tz: Optional[tzinfo] = None) -> Period:
    return Period(
        start=start_of_day(date(year, 1, 1), tz),
        end=end_of_day(date(year, 12, 31), tz),
    )


def weekly_period(reference: Union[datetime, date], tz: Optional[tzinfo] = None) -> Period:
    """Monday 00:00:00 through Sunday 23:59:59 of the ISO week of reference."""
    day = to_calendar_date(reference, tz)
    monday = day - timedelta(days=day.isoweekday() - 1)
    return Period(
        start=start_of_day(monday, tz),
        end=end_of_day(monday + timedelta(days=6), tz),
    )


def _compute(
    period_type: PeriodType,
    year: int,
    month: int,
    reference: date,
    tz: tzinfo,
) -> Period:
    if period_type == PeriodType.YEARLY:
        return yearly_period(year, tz)
    if period_type == PeriodType.WEEKLY:
        return weekly_period(reference, tz)
    return monthly_period(year, month, tz)


def calculate_period(
    period_type: Union[PeriodType, str],
    year: Optional[int] = None,
    month: Optional[int] = None,
    reference: Optional[Union[datetime, date]] = None,
    clock: Optional[Clock] = None,
) -> Period:
    """
    Compute a budget period.

    Args:
        period_type: weekly, monthly or yearly. Anything else gives the
                     current month.
        year: Year of a monthly/yearly period (defaults to this year)
        month: Month of a monthly period (defaults to this month)
        reference: Any day of a weekly period (defaults to today)
        clock: Source of "now"

    Returns:
        Period whose end is never before the start of today
    """
    tz = calendar_timezone()
    now = now_in_calendar(clock, tz)
    today = now.date()

    try:
        period_type = PeriodType(period_type)
    except ValueError:
        return monthly_period(now.year, now.month, tz)

    reference_day = to_calendar_date(reference, tz) if reference is not None else today
    period = _compute(
        period_type,
        year if year is not None else reference_day.year,
        month if month is not None else reference_day.month,
        reference_day,
        tz,
    )

    if period.end < start_of_day(today, tz):
        period = _compute(period_type, now.year, now.month, today, tz)
    return period


def get_current_period(
    period_type: Union[PeriodType, str],
    clock: Optional[Clock] = None,
) -> Period:
    """The period of the given type that contains now."""
    return calculate_period(period_type, clock=clock)


def period_contains(period: Period, value: Union[datetime, date]) -> bool:
    """Whether an instant, or a whole civil date, falls inside the period."""
    if isinstance(value, datetime):
        return period.contains(to_calendar(value))
    return period.start.date() <= value <= period.end.date()
