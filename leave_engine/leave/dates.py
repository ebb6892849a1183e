"""Date-range helpers for leave accounting.

Two day counts exist on purpose:

* ``weekday_count`` — Monday to Friday dates in the inclusive range. This is
  the only count that touches balances; allocations are in working days.
* ``inclusive_day_count`` — calendar length of the stretch, display only.

Datetimes are reduced to their own wall-clock date and never converted
between timezones, so a leave stored at 23:30+05:30 still lands on that day.
"""

from __future__ import annotations

from calendar import monthrange
from datetime import date, datetime
from typing import Union

from leave_engine.common.exceptions import ValidationException

DateLike = Union[date, datetime]

_SATURDAY = 5


def as_calendar_date(value: DateLike) -> date:
    """Reduce a date or datetime to a plain ``date`` (year/month/day only)."""
    if isinstance(value, datetime):
        return value.date()
    return value


def _check_order(start: date, end: date) -> None:
    if start > end:
        raise ValueError(f"start {start.isoformat()} is after end {end.isoformat()}")


def inclusive_day_count(start: DateLike, end: DateLike) -> int:
    """Calendar days in the range, both endpoints included."""
    start_d, end_d = as_calendar_date(start), as_calendar_date(end)
    _check_order(start_d, end_d)
    return (end_d - start_d).days + 1


def weekday_count(start: DateLike, end: DateLike) -> int:
    """Number of Monday–Friday dates in the inclusive range."""
    start_d, end_d = as_calendar_date(start), as_calendar_date(end)
    _check_order(start_d, end_d)

    total_days = (end_d - start_d).days + 1
    full_weeks, extra = divmod(total_days, 7)
    count = full_weeks * 5
    first_weekday = start_d.weekday()
    for offset in range(extra):
        if (first_weekday + offset) % 7 < _SATURDAY:
            count += 1
    return count


def weekday_count_by_year(start: DateLike, end: DateLike) -> dict[int, int]:
    """``weekday_count`` split per calendar year; years with zero are omitted."""
    start_d, end_d = as_calendar_date(start), as_calendar_date(end)
    _check_order(start_d, end_d)

    split: dict[int, int] = {}
    for year in range(start_d.year, end_d.year + 1):
        year_start = max(start_d, date(year, 1, 1))
        year_end = min(end_d, date(year, 12, 31))
        days = weekday_count(year_start, year_end)
        if days:
            split[year] = days
    return split


def same_calendar_date(a: DateLike, b: DateLike) -> bool:
    """True when both values fall on the same year/month/day."""
    return as_calendar_date(a) == as_calendar_date(b)


def ranges_intersect(
    start: DateLike, end: DateLike, window_start: DateLike, window_end: DateLike,
) -> bool:
    """Inclusive intersection test on calendar dates."""
    return (
        as_calendar_date(start) <= as_calendar_date(window_end)
        and as_calendar_date(end) >= as_calendar_date(window_start)
    )


def month_bounds(year: int, month: int) -> tuple[date, date]:
    """First and last date of a month."""
    _, last_day = monthrange(year, month)
    return date(year, month, 1), date(year, month, last_day)


def validate_range(start: DateLike, end: DateLike) -> None:
    """Raise ``ValidationException`` for an inverted range."""
    if as_calendar_date(end) < as_calendar_date(start):
        raise ValidationException(
            {"end_date": ["End date must be on or after start date."]}
        )
