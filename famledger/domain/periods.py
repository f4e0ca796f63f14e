"""
Calendar-aligned period partitioning.

A range [from_date, to_date] (inclusive) is split into contiguous,
non-overlapping buckets whose boundaries fall on calendar edges: weeks start
on Monday, months/quarters/years on their first day. The first and last
bucket are clipped to the requested range.
"""
from dataclasses import dataclass
from datetime import date, timedelta

from famledger.domain.errors import InvalidInputError, InvalidDateRange
from famledger.domain.recurrence import add_months

GROUP_DAY = "day"
GROUP_WEEK = "week"
GROUP_MONTH = "month"
GROUP_QUARTER = "quarter"
GROUP_YEAR = "year"
VALID_GROUPS = (GROUP_DAY, GROUP_WEEK, GROUP_MONTH, GROUP_QUARTER, GROUP_YEAR)


@dataclass(frozen=True)
class Period:
    label: str
    start: date  # inclusive
    end: date  # inclusive

    def contains(self, d: date) -> bool:
        return self.start <= d <= self.end


def validate_group_by(group_by: str) -> str:
    if group_by not in VALID_GROUPS:
        raise InvalidInputError(
            f"invalid group_by: {group_by!r}, expected one of {', '.join(VALID_GROUPS)}",
            field="group_by",
        )
    return group_by


def period_start(d: date, group_by: str) -> date:
    """Calendar start of the period containing ``d``."""
    if group_by == GROUP_DAY:
        return d
    if group_by == GROUP_WEEK:
        return d - timedelta(days=d.weekday())
    if group_by == GROUP_MONTH:
        return d.replace(day=1)
    if group_by == GROUP_QUARTER:
        return date(d.year, (d.month - 1) // 3 * 3 + 1, 1)
    if group_by == GROUP_YEAR:
        return date(d.year, 1, 1)
    raise InvalidInputError(f"invalid group_by: {group_by!r}", field="group_by")


def next_period_start(start: date, group_by: str) -> date:
    if group_by == GROUP_DAY:
        return start + timedelta(days=1)
    if group_by == GROUP_WEEK:
        return start + timedelta(days=7)
    if group_by == GROUP_MONTH:
        return add_months(start, 1)
    if group_by == GROUP_QUARTER:
        return add_months(start, 3)
    if group_by == GROUP_YEAR:
        return date(start.year + 1, 1, 1)
    raise InvalidInputError(f"invalid group_by: {group_by!r}", field="group_by")


def period_label(start: date, group_by: str) -> str:
    if group_by == GROUP_DAY:
        return start.isoformat()
    if group_by == GROUP_WEEK:
        return f"Week of {start.isoformat()}"
    if group_by == GROUP_MONTH:
        return f"{start.year:04d}-{start.month:02d}"
    if group_by == GROUP_QUARTER:
        return f"Q{(start.month - 1) // 3 + 1} {start.year}"
    return str(start.year)


def partition(from_date: date, to_date: date, group_by: str) -> list[Period]:
    """
    Split [from_date, to_date] into calendar-aligned periods.

    Raises:
        InvalidDateRange: from_date is after to_date
        InvalidInputError: unknown group_by
    """
    validate_group_by(group_by)
    if from_date > to_date:
        raise InvalidDateRange(from_date, to_date)

    periods: list[Period] = []
    start = period_start(from_date, group_by)
    while start <= to_date:
        nxt = next_period_start(start, group_by)
        periods.append(Period(
            label=period_label(start, group_by),
            start=max(start, from_date),
            end=min(nxt - timedelta(days=1), to_date),
        ))
        start = nxt
    return periods


def following_periods(after: date, group_by: str, count: int) -> list[Period]:
    """
    ``count`` periods covering the days after ``after``.

    The first period starts the day after ``after`` and is clipped to the
    calendar period it falls in; the rest are whole periods.
    """
    validate_group_by(group_by)
    periods: list[Period] = []
    start = after + timedelta(days=1)
    for _ in range(count):
        aligned = period_start(start, group_by)
        nxt = next_period_start(aligned, group_by)
        periods.append(Period(period_label(aligned, group_by), start, nxt - timedelta(days=1)))
        start = nxt
    return periods


def month_bounds(year: int, month: int) -> tuple[date, date]:
    if not 1 <= month <= 12:
        raise InvalidInputError(f"invalid month: {month}", field="month")
    start = date(year, month, 1)
    return start, add_months(start, 1) - timedelta(days=1)
