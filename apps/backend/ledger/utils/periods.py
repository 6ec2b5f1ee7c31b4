"""
Calendar helpers for month-based periods.

A "period" is the calendar month containing a given day. Month arithmetic
clamps the day to the target month's length, e.g. Jan 31 + 1 month = Feb 28.
"""

from __future__ import annotations

import calendar
from datetime import date, timedelta


def clamp_day(year: int, month: int, day: int) -> date:
    """Build a date, clamping ``day`` to the last day of the month."""
    days_in_month = calendar.monthrange(year, month)[1]
    return date(year, month, min(day, days_in_month))


def add_months(value: date, months: int, *, day: int | None = None) -> date:
    """Shift ``value`` by ``months`` calendar months.

    ``day`` overrides the anchor day; it is clamped like ``value.day`` is.

    Example:
        >>> add_months(date(2024, 1, 31), 1)
        datetime.date(2024, 2, 29)
    """
    index = value.year * 12 + (value.month - 1) + months
    year, month0 = divmod(index, 12)
    return clamp_day(year, month0 + 1, day if day is not None else value.day)


def period_start(today: date) -> date:
    return today.replace(day=1)


def period_end(today: date) -> date:
    return add_months(period_start(today), 1) - timedelta(days=1)


def period_bounds(today: date) -> tuple[date, date]:
    """Return (first day, last day) of the month containing ``today``."""
    return period_start(today), period_end(today)
