from datetime import date, datetime, time, timedelta

import pytest

from models import Direction, Granularity
from periods import (
    SUNDAY,
    compute_bounds,
    days_in_month,
    navigate,
    resolve_reference,
    weeks_between,
)


def test_weekly_bounds_start_on_sunday_and_span_seven_days() -> None:
    # 2024-01-10 is a Wednesday.
    period = compute_bounds(date(2024, 1, 10), Granularity.weekly)
    assert period.start == datetime(2024, 1, 7, 0, 0)
    assert period.end == datetime.combine(date(2024, 1, 13), time.max)
    assert period.start.weekday() == SUNDAY
    assert period.end.date() - period.start.date() == timedelta(days=6)


def test_weekly_bounds_honor_configured_week_start() -> None:
    period = compute_bounds(date(2024, 1, 10), Granularity.weekly, week_start=0)
    assert period.start == datetime(2024, 1, 8)
    assert period.end.date() == date(2024, 1, 14)


def test_weekly_bounds_every_day_of_a_year() -> None:
    day = date(2024, 1, 1)
    while day.year == 2024:
        period = compute_bounds(day, Granularity.weekly)
        assert period.start.weekday() == SUNDAY
        assert period.end.date() - period.start.date() == timedelta(days=6)
        assert period.contains(datetime.combine(day, time(12, 0)))
        day += timedelta(days=1)


def test_monthly_and_yearly_bounds_follow_calendar() -> None:
    feb = compute_bounds(datetime(2024, 2, 14, 9, 30), Granularity.monthly)
    assert feb.start == datetime(2024, 2, 1)
    assert feb.end == datetime.combine(date(2024, 2, 29), time.max)

    year = compute_bounds(date(2023, 6, 5), Granularity.yearly)
    assert year.start == datetime(2023, 1, 1)
    assert year.end == datetime.combine(date(2023, 12, 31), time.max)


@pytest.mark.parametrize("granularity", list(Granularity))
def test_bounds_are_idempotent_within_a_period(granularity: Granularity) -> None:
    period = compute_bounds(date(2024, 3, 20), granularity)
    assert compute_bounds(period.start, granularity) == period
    assert compute_bounds(period.end, granularity) == period


def test_days_in_month_handles_leap_years() -> None:
    assert days_in_month(2024, 2) == 29
    assert days_in_month(2023, 2) == 28
    assert days_in_month(2023, 12) == 31


def test_navigate_steps_one_unit() -> None:
    assert navigate(date(2024, 1, 10), Granularity.weekly, Direction.next) == date(
        2024, 1, 17
    )
    assert navigate(date(2024, 1, 10), Granularity.weekly, Direction.prev) == date(
        2024, 1, 3
    )
    assert navigate(date(2024, 1, 10), Granularity.monthly, Direction.prev) == date(
        2023, 12, 10
    )
    assert navigate(date(2024, 1, 10), Granularity.yearly, "next") == date(2025, 1, 10)


def test_navigate_clamps_to_last_day_of_shorter_month() -> None:
    assert navigate(date(2024, 1, 31), Granularity.monthly, Direction.next) == date(
        2024, 2, 29
    )
    assert navigate(date(2024, 3, 31), Granularity.monthly, Direction.prev) == date(
        2024, 2, 29
    )
    assert navigate(date(2024, 2, 29), Granularity.yearly, Direction.next) == date(
        2025, 2, 28
    )


def test_weeks_between_rounds_partial_weeks_up() -> None:
    start = datetime(2024, 1, 1)
    assert weeks_between(start, start) == 0
    assert weeks_between(start, start + timedelta(seconds=1)) == 1
    assert weeks_between(start, start + timedelta(days=14)) == 2
    assert weeks_between(start, datetime(2024, 1, 21)) == 3
    assert weeks_between(start, datetime.combine(date(2024, 1, 21), time.max)) == 3


def test_resolve_reference_parses_iso_prefix() -> None:
    today = date(2024, 5, 1)
    assert resolve_reference(None, today=today) == today
    assert resolve_reference("", today=today) == today
    assert resolve_reference("2024-03-05T10:00:00Z") == date(2024, 3, 5)
    with pytest.raises(ValueError, match="Invalid date"):
        resolve_reference("not-a-date")
