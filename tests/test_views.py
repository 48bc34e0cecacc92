from datetime import date, datetime

from balances import BalanceSnapshot
from models import Granularity
from periods import compute_bounds
from services import CategoryGroup
from views import (
    budget_bar_percent,
    days_until,
    format_date_range,
    income_breakdown,
    snapshot_view,
)


def snapshot(balance_cents: int, period_allocation_cents: int) -> BalanceSnapshot:
    return BalanceSnapshot(
        category="Food",
        weekly_allocation_cents=10_000,
        period_allocation_cents=period_allocation_cents,
        period_spend_cents=2_000,
        allocation_count=3,
        total_allocated_cents=30_000,
        total_spent_cents=30_000 - balance_cents,
        balance_cents=balance_cents,
        allocation_effective_at=datetime(2024, 1, 1),
    )


def test_date_range_labels() -> None:
    assert format_date_range(compute_bounds(date(2024, 1, 10), Granularity.weekly)) == (
        "Jan 7 - Jan 13"
    )
    assert (
        format_date_range(compute_bounds(date(2024, 1, 10), Granularity.monthly))
        == "January 2024"
    )
    assert format_date_range(compute_bounds(date(2024, 1, 10), Granularity.yearly)) == "2024"


def test_budget_bar_is_clamped() -> None:
    assert budget_bar_percent(snapshot(5_000, 10_000)) == 50.0
    assert budget_bar_percent(snapshot(25_000, 10_000)) == 100.0
    assert budget_bar_percent(snapshot(-1_000, 10_000)) == 0.0
    assert budget_bar_percent(snapshot(5_000, 0)) == 0.0


def test_snapshot_view_formats_money() -> None:
    view = snapshot_view(snapshot(-1_050, 10_000))
    assert view["balance"] == "-$10.50"
    assert view["weekly_rate"] == "$100.00/week"
    assert view["over_budget"] is True
    assert view["starting_balance_cents"] == -1_050 + 2_000 - 10_000


def test_income_breakdown_in_display_units() -> None:
    groups = [
        CategoryGroup("Food", ["GROCERIES"], 1, 10_000),
        CategoryGroup("Rent", ["RENT"], 1, 50_000),
    ]
    breakdown = income_breakdown(100_000, groups, Granularity.monthly)
    assert breakdown["income_cents"] == 433_000
    assert breakdown["total_budget_cents"] == 259_800
    assert breakdown["remaining_cents"] == 173_200
    assert breakdown["unallocated_percent"] == 40.0
    assert [row["percent_of_income"] for row in breakdown["categories"]] == [10.0, 50.0]

    empty = income_breakdown(0, groups, Granularity.weekly)
    assert empty["unallocated_percent"] == 0.0
    assert [row["percent_of_income"] for row in empty["categories"]] == [0.0, 0.0]


def test_days_until_counts_calendar_days() -> None:
    assert days_until(date(2024, 3, 1), date(2024, 2, 1)) == 29
    assert days_until(date(2024, 1, 1), date(2024, 1, 3)) == -2


def test_days_until_defaults_to_local_today(monkeypatch) -> None:
    import views

    monkeypatch.setattr(views, "local_now", lambda: datetime(2024, 2, 29, 23, 30))
    assert days_until(date(2024, 3, 1)) == 1
