"""
Occurrence scheduling for recurring transactions.

Everything here is a pure function of a ``Schedule`` value: no database
access, no hidden cursor. Iterating twice over the same schedule and window
always yields the same dates.

Step ``n`` of a schedule is the n-th candidate date counted from the start:

- weekly / biweekly: ``start_date + 7n`` / ``start_date + 14n`` days
- monthly: ``day_of_month`` of the n-th month after the start month, clamped
  to the month's last day
- yearly: start month and ``day_of_month`` n years later (Feb 29 -> Feb 28)

A monthly candidate that falls before ``start_date`` (an explicit anchor day
earlier than the start day) is skipped, so ordinals begin at the first
candidate on or after ``start_date``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterator, TYPE_CHECKING

from ledger.models import RecurringFrequency
from ledger.utils.periods import add_months, clamp_day

if TYPE_CHECKING:
    from ledger import models


_STEP_DAYS = {
    RecurringFrequency.WEEKLY: 7,
    RecurringFrequency.BIWEEKLY: 14,
}


@dataclass(frozen=True)
class Schedule:
    frequency: RecurringFrequency
    start_date: date
    day_of_month: int | None = None
    end_date: date | None = None
    max_occurrences: int | None = None

    @classmethod
    def from_recurrence(cls, rule: "models.RecurringTransaction") -> "Schedule":
        return cls(
            frequency=RecurringFrequency(rule.frequency),
            start_date=rule.start_date,
            day_of_month=rule.day_of_month,
            end_date=rule.end_date,
            max_occurrences=rule.max_occurrences,
        )

    @property
    def anchor_day(self) -> int:
        return self.day_of_month or self.start_date.day

    @property
    def is_finite(self) -> bool:
        return self.end_date is not None or self.max_occurrences is not None


def _nth(schedule: Schedule, n: int) -> date:
    step = _STEP_DAYS.get(schedule.frequency)
    if step is not None:
        return schedule.start_date + timedelta(days=step * n)
    if schedule.frequency == RecurringFrequency.MONTHLY:
        return add_months(schedule.start_date.replace(day=1), n, day=schedule.anchor_day)
    if schedule.frequency == RecurringFrequency.YEARLY:
        return clamp_day(schedule.start_date.year + n, schedule.start_date.month, schedule.anchor_day)
    raise ValueError(f"Unsupported frequency: {schedule.frequency}")


def _first_step(schedule: Schedule) -> int:
    return 1 if _nth(schedule, 0) < schedule.start_date else 0


def _step_at_or_after(schedule: Schedule, day: date) -> int:
    """Smallest step whose candidate date is on or after ``day``."""
    first = _first_step(schedule)
    start = schedule.start_date
    if day <= start:
        return first

    step = _STEP_DAYS.get(schedule.frequency)
    if step is not None:
        n = -(-(day - start).days // step)
    elif schedule.frequency == RecurringFrequency.MONTHLY:
        n = (day.year - start.year) * 12 + (day.month - start.month)
    else:
        n = day.year - start.year

    n = max(n, first)
    # the estimate can be one step short (clamped days, partial periods)
    while _nth(schedule, n) < day:
        n += 1
    return n


def _within_bounds(schedule: Schedule, ordinal: int, candidate: date) -> bool:
    if schedule.max_occurrences is not None and ordinal >= schedule.max_occurrences:
        return False
    if schedule.end_date is not None and candidate > schedule.end_date:
        return False
    return True


def iter_occurrences(schedule: Schedule, start: date | None = None) -> Iterator[date]:
    """Lazily yield occurrence dates in ascending order.

    Unbounded for indefinite schedules; callers must stop consuming at an
    explicit upper date. ``start`` skips ahead to the first occurrence on or
    after that day without walking the earlier ones.
    """
    first = _first_step(schedule)
    n = first if start is None else _step_at_or_after(schedule, start)
    while True:
        candidate = _nth(schedule, n)
        if not _within_bounds(schedule, n - first, candidate):
            return
        yield candidate
        n += 1


def occurrences_between(schedule: Schedule, start: date, end: date) -> list[date]:
    """Occurrence dates within ``[start, end]`` (both inclusive), ascending."""
    if end < start:
        return []
    dates: list[date] = []
    for candidate in iter_occurrences(schedule, start):
        if candidate > end:
            break
        dates.append(candidate)
    return dates


def next_occurrence_after(schedule: Schedule, after: date) -> date | None:
    return next(iter_occurrences(schedule, after + timedelta(days=1)), None)


def occurrence_index(schedule: Schedule, day: date) -> int | None:
    """Zero-based ordinal of ``day`` in the schedule, or None if not scheduled."""
    if day < schedule.start_date:
        return None
    n = _step_at_or_after(schedule, day)
    if _nth(schedule, n) != day:
        return None
    ordinal = n - _first_step(schedule)
    if not _within_bounds(schedule, ordinal, day):
        return None
    return ordinal
