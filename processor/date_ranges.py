"""
Date range calculation for event filters.

All weekday arithmetic lives here. Weeks run Monday to Sunday and every
range is inclusive: starts are at local midnight, ends at 23:59:59.999.
"""
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Callable, Dict, Optional, Union

from processor.errors import ValidationError
from processor.models import DateRange

MONDAY, FRIDAY, SUNDAY = 0, 4, 6


class DateFilter(str, Enum):
    TODAY = 'today'
    THIS_WEEK = 'thisWeek'
    THIS_WEEKEND = 'thisWeekend'
    NEXT_WEEK = 'nextWeek'
    NEXT_WEEKEND = 'nextWeekend'


def parse_date_filter(value: Union[str, DateFilter]) -> DateFilter:
    """
    Resolve a filter name such as ``"thisWeekend"`` to a DateFilter.

    Raises:
        ValidationError: If the name is not a known filter
    """
    try:
        return DateFilter(value)
    except ValueError:
        names = ', '.join(f.value for f in DateFilter)
        raise ValidationError(f"Unknown date filter {value!r}; expected one of: {names}")


def start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def end_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=23, minute=59, second=59, microsecond=999000)


def _normalize_base(
    base_date: Optional[Union[date, datetime]],
    clock: Callable[[], datetime],
) -> datetime:
    if base_date is None:
        base_date = clock()
    if isinstance(base_date, datetime):
        return start_of_day(base_date)
    if isinstance(base_date, date):
        return datetime(base_date.year, base_date.month, base_date.day)
    raise ValidationError(f"Base date must be a date or datetime, got {type(base_date).__name__}")


def _today(today: datetime) -> DateRange:
    return DateRange(today, end_of_day(today))


def _this_week(today: datetime) -> DateRange:
    days_until_sunday = SUNDAY - today.weekday()
    return DateRange(today, end_of_day(today + timedelta(days=days_until_sunday)))


def _this_weekend(today: datetime) -> DateRange:
    start = today
    if today.weekday() < FRIDAY:
        start = today + timedelta(days=FRIDAY - today.weekday())
    # Friday through Sunday start today; Sunday collapses to a single day
    end = today + timedelta(days=SUNDAY - today.weekday())
    return DateRange(start, end_of_day(end))


def _next_week(today: datetime) -> DateRange:
    # Monday -> +7, Sunday -> +1 (tomorrow)
    start = today + timedelta(days=7 - today.weekday())
    return DateRange(start, end_of_day(start + timedelta(days=6)))


def _next_weekend(today: datetime) -> DateRange:
    # Friday of the current Monday-Sunday week; negative offset on Sat/Sun
    this_friday = today + timedelta(days=FRIDAY - today.weekday())
    start = this_friday + timedelta(days=7)
    return DateRange(start, end_of_day(start + timedelta(days=2)))


_CALCULATORS: Dict[DateFilter, Callable[[datetime], DateRange]] = {
    DateFilter.TODAY: _today,
    DateFilter.THIS_WEEK: _this_week,
    DateFilter.THIS_WEEKEND: _this_weekend,
    DateFilter.NEXT_WEEK: _next_week,
    DateFilter.NEXT_WEEKEND: _next_weekend,
}


def get_date_range(
    date_filter: Union[str, DateFilter],
    base_date: Optional[Union[date, datetime]] = None,
    clock: Callable[[], datetime] = datetime.now,
) -> DateRange:
    """
    Calculate the inclusive date range for an event filter.

    Args:
        date_filter: Filter name (today, thisWeek, thisWeekend, nextWeek, nextWeekend)
        base_date: Date to calculate from; defaults to ``clock()``
        clock: Source of the current moment, injectable for tests

    Returns:
        DateRange starting at local midnight and ending at end-of-day

    Raises:
        ValidationError: For unknown filters or a non-date base
    """
    resolved = parse_date_filter(date_filter)
    today = _normalize_base(base_date, clock)
    return _CALCULATORS[resolved](today)


def is_date_in_range(
    moment: Union[date, datetime],
    date_filter: Union[str, DateFilter],
    base_date: Optional[Union[date, datetime]] = None,
    clock: Callable[[], datetime] = datetime.now,
) -> bool:
    """Check whether a date falls inside the range of a filter."""
    if not isinstance(moment, datetime):
        moment = datetime(moment.year, moment.month, moment.day)
    return get_date_range(date_filter, base_date, clock).contains(moment)


def get_formatted_date_range(
    date_filter: Union[str, DateFilter],
    base_date: Optional[Union[date, datetime]] = None,
    clock: Callable[[], datetime] = datetime.now,
) -> Dict[str, str]:
    """Date range as ISO strings, e.g. ``{"startDate": "2024-03-01", "endDate": "2024-03-03"}``."""
    return get_date_range(date_filter, base_date, clock).to_query_params()


def describe_date_filter(
    date_filter: Union[str, DateFilter],
    base_date: Optional[Union[date, datetime]] = None,
    clock: Callable[[], datetime] = datetime.now,
) -> str:
    """Human-readable description, e.g. ``"Mar 1 - Mar 3"``."""
    return get_date_range(date_filter, base_date, clock).describe()
