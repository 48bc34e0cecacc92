from datetime import date
from typing import Optional

from balances import BalanceSnapshot
from models import Granularity, SavingsGoal, Transaction
from money import format_currency, scale_weekly
from periods import Period, local_now
from services import BalanceReport, CategoryDetail, CategoryGroup


def format_date_range(period: Period) -> str:
    if period.granularity == Granularity.yearly:
        return str(period.start.year)
    if period.granularity == Granularity.monthly:
        return period.start.strftime("%B %Y")
    start = f"{period.start.strftime('%b')} {period.start.day}"
    end = f"{period.end.strftime('%b')} {period.end.day}"
    return f"{start} - {end}"


def budget_bar_percent(snapshot: BalanceSnapshot) -> float:
    if snapshot.period_allocation_cents == 0:
        return 0.0
    ratio = snapshot.balance_cents / snapshot.period_allocation_cents * 100
    return round(min(max(ratio, 0.0), 100.0), 1)


def percent_of(amount_cents: int, total_cents: int) -> float:
    if total_cents <= 0:
        return 0.0
    return round(amount_cents / total_cents * 100, 1)


def period_view(period: Period) -> dict[str, object]:
    return {
        "granularity": period.granularity.value,
        "start": period.start.isoformat(),
        "end": period.end.isoformat(),
        "label": format_date_range(period),
    }


def snapshot_view(snapshot: BalanceSnapshot) -> dict[str, object]:
    return {
        "category": snapshot.category,
        "weekly_allocation_cents": snapshot.weekly_allocation_cents,
        "period_allocation_cents": snapshot.period_allocation_cents,
        "period_spend_cents": snapshot.period_spend_cents,
        "total_allocated_cents": snapshot.total_allocated_cents,
        "total_spent_cents": snapshot.total_spent_cents,
        "balance_cents": snapshot.balance_cents,
        "starting_balance_cents": snapshot.starting_balance_cents,
        "allocation_effective_at": snapshot.allocation_effective_at.isoformat(),
        "balance": format_currency(snapshot.balance_cents),
        "weekly_rate": f"{format_currency(snapshot.weekly_allocation_cents)}/week",
        "over_budget": snapshot.balance_cents < 0,
        "bar_percent": budget_bar_percent(snapshot),
    }


def report_view(report: BalanceReport) -> dict[str, object]:
    return {
        "period": period_view(report.period),
        "categories": [snapshot_view(s) for s in report.snapshots],
        "error": report.error,
        "generation": report.generation,
        "stale": report.stale,
    }


def transaction_view(txn: Transaction) -> dict[str, object]:
    return {
        "id": txn.id,
        "date": txn.date.isoformat(),
        "amount_cents": txn.amount_cents,
        "name": txn.name,
        "merchant_name": txn.merchant_name,
        "display_name": txn.merchant_name or txn.name,
        "category": txn.category,
        "subcategory": txn.subcategory,
    }


def category_detail_view(detail: CategoryDetail) -> dict[str, object]:
    spent = sum(txn.amount_cents for txn in detail.transactions)
    snapshot = detail.snapshot
    return {
        "period": period_view(detail.period),
        "category": snapshot_view(snapshot) if snapshot else None,
        "starting_balance_cents": snapshot.starting_balance_cents if snapshot else 0,
        "transactions": [transaction_view(txn) for txn in detail.transactions],
        "total_spent_cents": spent,
        "error": detail.error,
    }


def income_breakdown(
    weekly_income_cents: int,
    groups: list[CategoryGroup],
    granularity: Granularity,
) -> dict[str, object]:
    """Allocations as shares of income, all in ``granularity`` units."""
    income = scale_weekly(weekly_income_cents, granularity)
    total_weekly = sum(g.weekly_allocation_cents for g in groups)
    total = scale_weekly(total_weekly, granularity)
    remaining = income - total
    rows = []
    for group in groups:
        amount = scale_weekly(group.weekly_allocation_cents, granularity)
        rows.append(
            {
                "category": group.name,
                "subcategories": group.subcategories,
                "count": group.count,
                "amount_cents": amount,
                "percent_of_income": percent_of(amount, income),
            }
        )
    return {
        "granularity": granularity.value,
        "income_cents": income,
        "total_budget_cents": total,
        "remaining_cents": remaining,
        "unallocated_percent": percent_of(remaining, income) if remaining > 0 else 0.0,
        "categories": rows,
    }


def days_until(target: date, today: Optional[date] = None) -> int:
    today = today or local_now().date()
    return (target - today).days


def goal_view(goal: SavingsGoal, today: Optional[date] = None) -> dict[str, object]:
    return {
        "id": goal.id,
        "name": goal.name,
        "target_cents": goal.target_cents,
        "current_cents": goal.current_cents,
        "target_date": goal.target_date.isoformat(),
        "description": goal.description,
        "progress_percent": percent_of(goal.current_cents, goal.target_cents),
        "days_until_target": days_until(goal.target_date, today),
    }
