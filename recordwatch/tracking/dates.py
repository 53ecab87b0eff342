"""Date parsing and range construction for polling jobs."""
from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Iterable, List, Tuple, Union

from dateutil import parser as dateparser

from recordwatch.tracking.models import InvalidRangeError

DateLike = Union[date, datetime, str]


def parse_day(value: DateLike) -> date:
    """Coerce a date, datetime or ISO string into a calendar date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return dateparser.isoparse(str(value).strip()).date()
    except (ValueError, OverflowError) as exc:
        raise InvalidRangeError(f"Not an ISO date: {value!r}") from exc


def expand_date_range(start: DateLike, end: DateLike) -> Tuple[date, ...]:
    """Return every calendar day from start to end inclusive."""
    first = parse_day(start)
    last = parse_day(end)
    if first > last:
        raise InvalidRangeError(f"Start date {first} is after end date {last}")
    span = (last - first).days
    return tuple(first + timedelta(days=offset) for offset in range(span + 1))


def ordered_range(days: Iterable[DateLike]) -> Tuple[date, ...]:
    """Validate an explicit sequence of dates, collapsing repeats."""
    parsed: List[date] = []
    for value in days:
        day = parse_day(value)
        if parsed and day < parsed[-1]:
            raise InvalidRangeError(f"Date range is not chronological: {day} follows {parsed[-1]}")
        if parsed and day == parsed[-1]:
            continue
        parsed.append(day)
    if not parsed:
        raise InvalidRangeError("Date range is empty")
    return tuple(parsed)
