"""
Deterministic recurrence calculator.

Uses date only (no timezone). Given a frequency and an anchor date it
computes the next occurrence, or expands the anchor into a bounded forward
sequence of occurrences.

Frequencies:
- once: no next occurrence
- weekly / biweekly: +7 / +14 days
- monthly / quarterly / annual: +1 / +3 / +12 calendar months on the
  anchor's day of month, clipped to the last day of shorter months
"""
import calendar
from datetime import date, timedelta

from famledger.domain.errors import InvalidInputError
from famledger.domain.statuses import (
    VALID_FREQUENCIES, FREQ_ONCE, FREQ_WEEKLY, FREQ_BIWEEKLY,
    FREQ_MONTHLY, FREQ_QUARTERLY, FREQ_ANNUAL,
)

MAX_OCCURRENCES = 500

_DAY_STEPS = {FREQ_WEEKLY: 7, FREQ_BIWEEKLY: 14}
_MONTH_STEPS = {FREQ_MONTHLY: 1, FREQ_QUARTERLY: 3, FREQ_ANNUAL: 12}


def last_day_of_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def add_months(d: date, n: int) -> date:
    month = d.month - 1 + n
    year = d.year + month // 12
    month = month % 12 + 1
    last = last_day_of_month(year, month)
    day = min(d.day, last)
    return date(year, month, day)


def validate_frequency(frequency: str) -> str:
    if frequency not in VALID_FREQUENCIES:
        raise InvalidInputError(
            f"invalid frequency: {frequency!r}, expected one of {', '.join(VALID_FREQUENCIES)}",
            field="frequency",
        )
    return frequency


def occurrence_at(anchor_date: date, frequency: str, k: int) -> date | None:
    """
    k-th occurrence of an anchor (k=0 is the anchor itself).

    Computed from the anchor rather than from the previous occurrence, so a
    31st-of-month anchor returns to the 31st after passing through February.
    """
    validate_frequency(frequency)
    if k < 0:
        raise InvalidInputError("occurrence index must be >= 0", field="k")
    if k == 0:
        return anchor_date
    if frequency == FREQ_ONCE:
        return None
    if frequency in _DAY_STEPS:
        return anchor_date + timedelta(days=_DAY_STEPS[frequency] * k)
    return add_months(anchor_date, _MONTH_STEPS[frequency] * k)


def next_occurrence(anchor_date: date, frequency: str) -> date | None:
    """Next occurrence after ``anchor_date``; ``None`` for one-off schedules."""
    return occurrence_at(anchor_date, frequency, 1)


def first_index_on_or_after(anchor_date: date, frequency: str, start: date) -> int | None:
    """
    Smallest k whose occurrence falls on or after ``start``.

    ``None`` when a one-off anchor lies before ``start``.
    """
    validate_frequency(frequency)
    if start <= anchor_date:
        return 0
    if frequency == FREQ_ONCE:
        return None
    if frequency in _DAY_STEPS:
        return -(-(start - anchor_date).days // _DAY_STEPS[frequency])
    months = (start.year - anchor_date.year) * 12 + start.month - anchor_date.month
    k = months // _MONTH_STEPS[frequency]
    while occurrence_at(anchor_date, frequency, k) < start:
        k += 1
    return k


def expand(
    anchor_date: date,
    frequency: str,
    window_end: date,
    window_start: date | None = None,
    max_count: int = MAX_OCCURRENCES,
) -> list[date]:
    """
    Occurrences of an anchor strictly before ``window_end``, ascending.

    The anchor itself is the first occurrence. ``window_start`` (inclusive)
    drops earlier occurrences; expansion jumps straight to it, so an old
    anchor still fills a late window. At most ``max_count`` occurrences are
    returned. The result is a list so it can be iterated any number of times.
    """
    validate_frequency(frequency)
    if max_count < 1:
        raise InvalidInputError("max_count must be >= 1", field="max_count")

    first = 0 if window_start is None else first_index_on_or_after(anchor_date, frequency, window_start)
    if first is None:
        return []
    out: list[date] = []
    for k in range(first, first + max_count):
        d = occurrence_at(anchor_date, frequency, k)
        if d is None or d >= window_end:
            break
        out.append(d)
    return out
