"""Cumulative allocation-versus-spend balances per category.

Everything here is a pure function of its inputs: the caller fetches
categories, allocation rates and ledger entries, and re-invokes
:func:`compute_balances` whenever any of them change.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional, Sequence

from models import Granularity
from money import scale_weekly
from periods import Period, local_now, weeks_between


@dataclass(frozen=True)
class LedgerEntry:
    category: Optional[str]
    amount_cents: int
    occurred_at: datetime


@dataclass(frozen=True)
class AllocationRate:
    category: str
    weekly_cents: int
    effective_at: datetime


@dataclass(frozen=True)
class BalanceInputs:
    period: Period
    categories: Sequence[str]
    allocations: Sequence[AllocationRate]
    # Expenses dated on or before period end, across all time.
    spend_to_date: Sequence[LedgerEntry]
    # Expenses dated within the period.
    period_spend: Sequence[LedgerEntry]
    now: datetime = field(default_factory=local_now)


@dataclass(frozen=True)
class BalanceSnapshot:
    category: str
    weekly_allocation_cents: int
    period_allocation_cents: int
    period_spend_cents: int
    allocation_count: int
    total_allocated_cents: int
    total_spent_cents: int
    balance_cents: int
    allocation_effective_at: datetime

    @property
    def starting_balance_cents(self) -> int:
        """Balance carried into the period, before its allocation and spend."""
        return (
            self.balance_cents
            + self.period_spend_cents
            - self.period_allocation_cents
        )


def _is_expense(entry: LedgerEntry) -> bool:
    return entry.amount_cents >= 0 and bool(entry.category)


def earliest_activity(entries: Iterable[LedgerEntry]) -> Optional[datetime]:
    """Oldest categorized expense across every category."""
    dates = [e.occurred_at for e in entries if _is_expense(e)]
    return min(dates) if dates else None


def allocation_counts_in_period(effective_at: datetime, period: Period) -> bool:
    """Whether the period's display allocation is shown for a rate.

    Only ``period_allocation_cents`` is gated on the effective date; the
    cumulative total in :func:`accrued_allocation` is not.
    """
    return effective_at <= period.end


def accrued_allocation(
    weekly_cents: int,
    accrual_start: Optional[datetime],
    period_end: datetime,
) -> tuple[int, int]:
    """Number of weekly allocations paid out to ``period_end`` and their total.

    ``accrual_start`` is the user's first categorized expense, shared by every
    category regardless of when its allocation was created.
    """
    if accrual_start is None or weekly_cents <= 0:
        return 0, 0
    count = weeks_between(accrual_start, period_end)
    return count, count * weekly_cents


def _sum_by_category(entries: Iterable[LedgerEntry]) -> dict[str, int]:
    totals: dict[str, int] = {}
    for entry in entries:
        if not _is_expense(entry):
            continue
        totals[entry.category] = totals.get(entry.category, 0) + entry.amount_cents
    return totals


def compute_balances(inputs: BalanceInputs) -> list[BalanceSnapshot]:
    period = inputs.period
    granularity = Granularity(period.granularity)

    to_date = [e for e in inputs.spend_to_date if e.occurred_at <= period.end]
    in_period = [e for e in inputs.period_spend if period.contains(e.occurred_at)]

    rates = {a.category: a for a in inputs.allocations if a.category}
    names = set(c for c in inputs.categories if c) | set(rates)

    spent_to_date = _sum_by_category(to_date)
    spent_in_period = _sum_by_category(in_period)
    accrual_start = earliest_activity(to_date)

    snapshots: list[BalanceSnapshot] = []
    for name in sorted(names):
        rate = rates.get(name)
        weekly = rate.weekly_cents if rate else 0
        effective_at = rate.effective_at if rate else inputs.now

        period_allocation = 0
        if allocation_counts_in_period(effective_at, period):
            period_allocation = scale_weekly(weekly, granularity)

        count, total_allocated = accrued_allocation(weekly, accrual_start, period.end)
        total_spent = spent_to_date.get(name, 0)

        snapshots.append(
            BalanceSnapshot(
                category=name,
                weekly_allocation_cents=weekly,
                period_allocation_cents=period_allocation,
                period_spend_cents=spent_in_period.get(name, 0),
                allocation_count=count,
                total_allocated_cents=total_allocated,
                total_spent_cents=total_spent,
                balance_cents=total_allocated - total_spent,
                allocation_effective_at=effective_at,
            )
        )
    return snapshots
