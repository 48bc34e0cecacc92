from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Optional, Union
from zoneinfo import ZoneInfo

from config import get_settings
from models import Direction, Granularity

SUNDAY = 6
WEEK = timedelta(weeks=1)


@dataclass(frozen=True)
class Period:
    granularity: Granularity
    start: datetime
    end: datetime

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end


def local_now() -> datetime:
    settings = get_settings()
    return datetime.now(ZoneInfo(settings.timezone)).replace(tzinfo=None)


def _as_date(reference: Union[date, datetime]) -> date:
    if isinstance(reference, datetime):
        return reference.date()
    return reference


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def _add_months(base: date, months: int) -> date:
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    return date(year, month, min(base.day, days_in_month(year, month)))


def _start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min)


def _end_of_day(day: date) -> datetime:
    return datetime.combine(day, time.max)


def compute_bounds(
    reference: Union[date, datetime],
    granularity: Granularity,
    *,
    week_start: int = SUNDAY,
) -> Period:
    """Calendar window containing ``reference``.

    Weekly windows begin on ``week_start`` (``date.weekday()`` numbering) and
    span seven days; monthly and yearly windows follow the calendar. ``end`` is
    the last representable instant of its day.
    """
    day = _as_date(reference)
    if granularity == Granularity.weekly:
        offset = (day.weekday() - week_start) % 7
        first = day - timedelta(days=offset)
        last = first + timedelta(days=6)
    elif granularity == Granularity.monthly:
        first = day.replace(day=1)
        last = day.replace(day=days_in_month(day.year, day.month))
    elif granularity == Granularity.yearly:
        first = date(day.year, 1, 1)
        last = date(day.year, 12, 31)
    else:
        raise ValueError(f"Unsupported granularity: {granularity}")
    return Period(granularity, _start_of_day(first), _end_of_day(last))


def navigate(
    reference: Union[date, datetime],
    granularity: Granularity,
    direction: Direction,
) -> date:
    """Step one period back or forward.

    Month and year steps keep the day of month, clamped to the last day of the
    target month (Jan 31 -> Feb 29 in a leap year, Feb 29 -> Feb 28).
    """
    day = _as_date(reference)
    step = 1 if Direction(direction) == Direction.next else -1
    if granularity == Granularity.weekly:
        return day + timedelta(days=7 * step)
    if granularity == Granularity.monthly:
        return _add_months(day, step)
    if granularity == Granularity.yearly:
        return _add_months(day, 12 * step)
    raise ValueError(f"Unsupported granularity: {granularity}")


def weeks_between(start: datetime, end: datetime) -> int:
    # Partial weeks round up: any week touched counts as an allocation.
    whole, remainder = divmod(end - start, WEEK)
    return whole + 1 if remainder else whole


def resolve_reference(value: Optional[str], *, today: Optional[date] = None) -> date:
    if not value:
        return today or local_now().date()
    try:
        return date.fromisoformat(value[:10])
    except ValueError as exc:
        raise ValueError(f"Invalid date: {value}") from exc
