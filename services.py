from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, time
from typing import Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from auth import NotAuthenticated
from balances import (
    AllocationRate,
    BalanceInputs,
    BalanceSnapshot,
    LedgerEntry,
    compute_balances,
)
from config import get_settings
from defaults import DEFAULT_CATEGORY_MAPPINGS
from models import Allocation, CategoryMapping, Granularity, SavingsGoal, Transaction
from money import parse_amount_or_zero, scale_weekly, to_weekly
from periods import Period, compute_bounds, local_now
from schemas import (
    BudgetSaveIn,
    CategoryMappingIn,
    ImportBatchIn,
    SavingsGoalIn,
    SavingsGoalProgressIn,
)

logger = logging.getLogger(__name__)


class StoreQueryFailed(RuntimeError):
    pass


class DuplicateMapping(ValueError):
    pass


def _require_user(user_id: Optional[str]) -> str:
    if not user_id:
        raise NotAuthenticated("No current user")
    return user_id


def _commit(session: Session, action: str) -> None:
    try:
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        raise StoreQueryFailed(f"{action} failed") from exc


def _fetch_all(session: Session, stmt, what: str) -> list:
    try:
        return list(session.scalars(stmt).all())
    except SQLAlchemyError as exc:
        session.rollback()
        raise StoreQueryFailed(f"Loading {what} failed") from exc


class TransactionRepository:
    def __init__(self, session: Session, user_id: Optional[str]) -> None:
        self.session = session
        self.user_id = _require_user(user_id)

    def query(
        self,
        *,
        category: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        min_amount_cents: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> list[Transaction]:
        stmt = select(Transaction).where(Transaction.user_id == self.user_id)
        if category is not None:
            stmt = stmt.where(Transaction.category == category)
        if date_from is not None:
            stmt = stmt.where(Transaction.occurred_at >= date_from)
        if date_to is not None:
            stmt = stmt.where(Transaction.occurred_at <= date_to)
        if min_amount_cents is not None:
            stmt = stmt.where(Transaction.amount_cents >= min_amount_cents)
        stmt = stmt.order_by(Transaction.occurred_at.asc(), Transaction.id.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        return _fetch_all(self.session, stmt, "transactions")

    def expenses(
        self,
        *,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> list[LedgerEntry]:
        rows = self.query(date_from=date_from, date_to=date_to, min_amount_cents=0)
        return [
            LedgerEntry(
                category=txn.category,
                amount_cents=txn.amount_cents,
                occurred_at=txn.occurred_at,
            )
            for txn in rows
        ]

    def update_category_for_subcategory(self, subcategory: str, category: str) -> int:
        stmt = (
            update(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.subcategory == subcategory,
            )
            .values(category=category)
        )
        try:
            result = self.session.execute(stmt)
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StoreQueryFailed("Relabeling transactions failed") from exc
        _commit(self.session, "Relabeling transactions")
        return int(result.rowcount or 0)


@dataclass(frozen=True)
class CategoryGroup:
    name: str
    subcategories: list[str]
    count: int
    weekly_allocation_cents: int


@dataclass(frozen=True)
class MappingAddResult:
    mapping: CategoryMapping
    relabeled: int
    relabel_error: Optional[str] = None


@dataclass
class SeedResult:
    added: int = 0
    already_present: int = 0
    relabeled: int = 0
    errors: dict[str, str] = field(default_factory=dict)


class CategoryService:
    batch_size = 50

    def __init__(self, session: Session, user_id: Optional[str]) -> None:
        self.session = session
        self.user_id = _require_user(user_id)
        self.transactions = TransactionRepository(session, self.user_id)

    def list_mappings(self) -> list[CategoryMapping]:
        stmt = (
            select(CategoryMapping)
            .where(CategoryMapping.user_id == self.user_id)
            .order_by(CategoryMapping.category, CategoryMapping.subcategory)
        )
        return _fetch_all(self.session, stmt, "categories")

    def list_names(self) -> list[str]:
        stmt = (
            select(CategoryMapping.category)
            .where(CategoryMapping.user_id == self.user_id)
            .distinct()
        )
        return sorted(_fetch_all(self.session, stmt, "categories"))

    def list_groups(self) -> list[CategoryGroup]:
        rates = {
            row.category: row.weekly_rate_cents or 0
            for row in AllocationService(self.session, self.user_id).category_rates()
        }
        labels: dict[str, set[str]] = {}
        counts: dict[str, int] = {}
        for mapping in self.list_mappings():
            labels.setdefault(mapping.category, set()).add(mapping.subcategory)
            counts[mapping.category] = counts.get(mapping.category, 0) + 1
        return [
            CategoryGroup(
                name=name,
                subcategories=sorted(labels[name]),
                count=counts[name],
                weekly_allocation_cents=rates.get(name, 0),
            )
            for name in sorted(labels)
        ]

    def _exists(self, category: str, subcategory: str) -> bool:
        stmt = select(CategoryMapping.id).where(
            CategoryMapping.user_id == self.user_id,
            CategoryMapping.category == category,
            CategoryMapping.subcategory == subcategory,
        )
        return bool(_fetch_all(self.session, stmt, "categories"))

    def add_mapping(self, data: CategoryMappingIn) -> MappingAddResult:
        category = data.category.strip()
        subcategory = data.subcategory.strip()
        if not category or not subcategory:
            raise ValueError("Both category and subcategory are required")
        if self._exists(category, subcategory):
            raise DuplicateMapping(
                "This category and subcategory combination already exists"
            )

        mapping = CategoryMapping(
            user_id=self.user_id, category=category, subcategory=subcategory
        )
        self.session.add(mapping)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise DuplicateMapping(
                "This category and subcategory combination already exists"
            ) from exc
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StoreQueryFailed("Adding category failed") from exc
        self.session.refresh(mapping)

        try:
            relabeled = self.transactions.update_category_for_subcategory(
                subcategory, category
            )
        except StoreQueryFailed as exc:
            # The mapping stays; the caller is told the backfill did not happen.
            logger.exception(
                f"category_relabel_failed: user={self.user_id} category={category}"
                f" subcategory={subcategory}"
            )
            return MappingAddResult(mapping, 0, str(exc))

        logger.info(
            f"category_add: user={self.user_id} category={category}"
            f" subcategory={subcategory} relabeled={relabeled}"
        )
        return MappingAddResult(mapping, relabeled)

    def remove_category(self, category: str) -> int:
        stmt = delete(CategoryMapping).where(
            CategoryMapping.user_id == self.user_id,
            CategoryMapping.category == category,
        )
        try:
            result = self.session.execute(stmt)
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StoreQueryFailed("Deleting category failed") from exc
        removed = int(result.rowcount or 0)
        if removed == 0:
            self.session.rollback()
            raise ValueError("Category not found")
        _commit(self.session, "Deleting category")
        logger.info(
            f"category_remove: user={self.user_id} category={category} mappings={removed}"
        )
        return removed

    def seed_defaults(self) -> SeedResult:
        existing = {
            (m.category, m.subcategory) for m in self.list_mappings()
        }
        to_add = [pair for pair in DEFAULT_CATEGORY_MAPPINGS if pair not in existing]
        result = SeedResult(already_present=len(DEFAULT_CATEGORY_MAPPINGS) - len(to_add))
        if not to_add:
            return result

        inserted: list[tuple[str, str]] = []
        for offset in range(0, len(to_add), self.batch_size):
            batch = to_add[offset : offset + self.batch_size]
            self.session.add_all(
                CategoryMapping(user_id=self.user_id, category=c, subcategory=s)
                for c, s in batch
            )
            try:
                _commit(self.session, "Adding default categories")
            except StoreQueryFailed as exc:
                logger.exception(
                    f"category_seed_failed: user={self.user_id} batch_start={offset}"
                    f" size={len(batch)}"
                )
                for _, subcategory in batch:
                    result.errors[subcategory] = str(exc)
                continue
            inserted.extend(batch)
            result.added += len(batch)

        for category, subcategory in inserted:
            try:
                result.relabeled += self.transactions.update_category_for_subcategory(
                    subcategory, category
                )
            except StoreQueryFailed as exc:
                logger.exception(
                    f"category_relabel_failed: user={self.user_id}"
                    f" category={category} subcategory={subcategory}"
                )
                result.errors[subcategory] = str(exc)

        logger.info(
            f"category_seed: user={self.user_id} added={result.added}"
            f" relabeled={result.relabeled} errors={len(result.errors)}"
        )
        return result


@dataclass
class BudgetSaveResult:
    weekly_income_cents: int
    saved: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)


class AllocationService:
    def __init__(self, session: Session, user_id: Optional[str]) -> None:
        self.session = session
        self.user_id = _require_user(user_id)

    def list_allocations(self) -> list[Allocation]:
        stmt = (
            select(Allocation)
            .where(Allocation.user_id == self.user_id)
            .order_by(Allocation.category.is_(None).desc(), Allocation.category)
        )
        return _fetch_all(self.session, stmt, "allocations")

    def category_rates(self) -> list[Allocation]:
        return [row for row in self.list_allocations() if row.category is not None]

    def _get(self, category: Optional[str]) -> Optional[Allocation]:
        stmt = select(Allocation).where(
            Allocation.user_id == self.user_id,
            Allocation.category.is_(None)
            if category is None
            else Allocation.category == category,
        )
        rows = _fetch_all(self.session, stmt, "allocations")
        return rows[0] if rows else None

    def weekly_income(self) -> int:
        row = self._get(None)
        return int(row.income_cents or 0) if row else 0

    def set_income(self, weekly_income_cents: int) -> Allocation:
        row = self._get(None)
        if row:
            row.income_cents = weekly_income_cents
        else:
            row = Allocation(
                user_id=self.user_id,
                category=None,
                weekly_rate_cents=None,
                income_cents=weekly_income_cents,
            )
            self.session.add(row)
        _commit(self.session, "Saving income")
        return row

    def upsert_allocation(
        self, category: Optional[str], weekly_cents: int
    ) -> Optional[Allocation]:
        """Store a weekly rate; ``category=None`` addresses the income row.

        A category rate that is not positive removes the row and returns None.
        The original ``created_at`` is kept on update.
        """
        if category is None:
            return self.set_income(weekly_cents)
        if weekly_cents <= 0:
            self.delete_allocation(category)
            return None
        row = self._get(category)
        if row:
            row.weekly_rate_cents = weekly_cents
        else:
            # Effective date shares the local clock used for period bounds.
            row = Allocation(
                user_id=self.user_id,
                category=category,
                weekly_rate_cents=weekly_cents,
                income_cents=None,
                created_at=local_now(),
            )
            self.session.add(row)
        _commit(self.session, f"Saving allocation for {category}")
        return row

    def delete_allocation(self, category: str) -> bool:
        stmt = delete(Allocation).where(
            Allocation.user_id == self.user_id, Allocation.category == category
        )
        try:
            result = self.session.execute(stmt)
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StoreQueryFailed(f"Deleting allocation for {category} failed") from exc
        _commit(self.session, f"Deleting allocation for {category}")
        return bool(result.rowcount)

    def save_budget(self, data: BudgetSaveIn) -> BudgetSaveResult:
        granularity = data.granularity
        weekly_income = to_weekly(parse_amount_or_zero(data.income), granularity)
        result = BudgetSaveResult(weekly_income_cents=weekly_income)
        try:
            self.set_income(weekly_income)
        except StoreQueryFailed as exc:
            logger.exception(f"budget_save_failed: user={self.user_id} scope=income")
            result.errors["income"] = str(exc)

        for category, raw in data.allocations.items():
            weekly = to_weekly(parse_amount_or_zero(raw), granularity)
            try:
                stored = self.upsert_allocation(category, weekly)
            except StoreQueryFailed as exc:
                logger.exception(
                    f"budget_save_failed: user={self.user_id} scope={category}"
                )
                result.errors[category] = str(exc)
                continue
            if stored is None:
                result.deleted.append(category)
            else:
                result.saved.append(category)

        logger.info(
            f"budget_save: user={self.user_id} granularity={granularity.value}"
            f" saved={len(result.saved)} deleted={len(result.deleted)}"
            f" errors={len(result.errors)}"
        )
        return result

    def display_amounts(
        self, granularity: Granularity, categories: Optional[list[str]] = None
    ) -> tuple[int, dict[str, int]]:
        """Income and per-category rates converted to ``granularity`` units."""
        rates = {row.category: row.weekly_rate_cents or 0 for row in self.category_rates()}
        names = set(rates) | set(categories or [])
        return (
            scale_weekly(self.weekly_income(), granularity),
            {name: scale_weekly(rates.get(name, 0), granularity) for name in sorted(names)},
        )


class RecomputeTracker:
    """Per-user generation counter so late balance results can be discarded."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._latest: dict[str, int] = {}

    def begin(self, user_id: str) -> int:
        with self._lock:
            generation = self._latest.get(user_id, 0) + 1
            self._latest[user_id] = generation
            return generation

    def is_current(self, user_id: str, generation: int) -> bool:
        with self._lock:
            return self._latest.get(user_id, 0) == generation


@dataclass(frozen=True)
class BalanceReport:
    period: Period
    snapshots: list[BalanceSnapshot]
    error: Optional[str] = None
    generation: int = 0
    stale: bool = False


@dataclass(frozen=True)
class CategoryDetail:
    period: Period
    snapshot: Optional[BalanceSnapshot]
    transactions: list[Transaction]
    error: Optional[str] = None


class BalanceService:
    def __init__(
        self,
        session: Session,
        user_id: Optional[str],
        *,
        week_start: Optional[int] = None,
        tracker: Optional[RecomputeTracker] = None,
    ) -> None:
        self.session = session
        self.user_id = _require_user(user_id)
        self.week_start = (
            week_start if week_start is not None else get_settings().week_start_day
        )
        self.tracker = tracker
        self.transactions = TransactionRepository(session, self.user_id)

    def period_for(self, granularity: Granularity, reference) -> Period:
        return compute_bounds(reference, granularity, week_start=self.week_start)

    def gather_inputs(self, period: Period, now: Optional[datetime] = None) -> BalanceInputs:
        rates = [
            AllocationRate(
                category=row.category,
                weekly_cents=row.weekly_rate_cents or 0,
                effective_at=row.created_at,
            )
            for row in AllocationService(self.session, self.user_id).category_rates()
        ]
        return BalanceInputs(
            period=period,
            categories=CategoryService(self.session, self.user_id).list_names(),
            allocations=rates,
            spend_to_date=self.transactions.expenses(date_to=period.end),
            period_spend=self.transactions.expenses(
                date_from=period.start, date_to=period.end
            ),
            now=now or local_now(),
        )

    def report(
        self,
        granularity: Granularity,
        reference,
        *,
        now: Optional[datetime] = None,
    ) -> BalanceReport:
        generation = self.tracker.begin(self.user_id) if self.tracker else 0
        period = self.period_for(granularity, reference)
        try:
            inputs = self.gather_inputs(period, now)
        except StoreQueryFailed as exc:
            logger.exception(
                f"balance_recompute_failed: user={self.user_id}"
                f" granularity={granularity.value} start={period.start.date()}"
            )
            return BalanceReport(period, [], error=str(exc), generation=generation)

        snapshots = compute_balances(inputs)
        stale = bool(self.tracker) and not self.tracker.is_current(
            self.user_id, generation
        )
        logger.debug(
            f"balance_recompute: user={self.user_id} granularity={granularity.value}"
            f" start={period.start.date()} categories={len(snapshots)} stale={stale}"
        )
        return BalanceReport(period, snapshots, generation=generation, stale=stale)

    def category_detail(
        self,
        category: str,
        granularity: Granularity,
        reference,
        *,
        now: Optional[datetime] = None,
    ) -> CategoryDetail:
        report = self.report(granularity, reference, now=now)
        if report.error:
            return CategoryDetail(report.period, None, [], error=report.error)
        snapshot = next((s for s in report.snapshots if s.category == category), None)
        if snapshot is None:
            raise ValueError("Category not found")
        try:
            rows = self.transactions.query(
                category=category,
                date_from=report.period.start,
                date_to=report.period.end,
                min_amount_cents=0,
            )
        except StoreQueryFailed as exc:
            logger.exception(
                f"category_detail_failed: user={self.user_id} category={category}"
            )
            return CategoryDetail(report.period, snapshot, [], error=str(exc))
        return CategoryDetail(report.period, snapshot, rows)


class SavingsGoalService:
    def __init__(self, session: Session, user_id: Optional[str]) -> None:
        self.session = session
        self.user_id = _require_user(user_id)

    def list_all(self) -> list[SavingsGoal]:
        stmt = (
            select(SavingsGoal)
            .where(SavingsGoal.user_id == self.user_id)
            .order_by(SavingsGoal.target_date, SavingsGoal.id)
        )
        return _fetch_all(self.session, stmt, "savings goals")

    def get(self, goal_id: int) -> SavingsGoal:
        goal = self.session.get(SavingsGoal, goal_id)
        if not goal or goal.user_id != self.user_id:
            raise ValueError("Savings goal not found")
        return goal

    def create(self, data: SavingsGoalIn) -> SavingsGoal:
        name = data.name.strip()
        if not name:
            raise ValueError("Goal name is required")
        goal = SavingsGoal(
            user_id=self.user_id,
            name=name,
            target_cents=data.target_cents,
            current_cents=0,
            target_date=data.target_date,
            description=(data.description or "").strip() or None,
        )
        self.session.add(goal)
        _commit(self.session, "Creating savings goal")
        self.session.refresh(goal)
        return goal

    def update_progress(self, goal_id: int, data: SavingsGoalProgressIn) -> SavingsGoal:
        goal = self.get(goal_id)
        goal.current_cents = data.current_cents
        _commit(self.session, "Updating savings goal")
        return goal

    def delete(self, goal_id: int) -> None:
        goal = self.get(goal_id)
        self.session.delete(goal)
        _commit(self.session, "Deleting savings goal")


@dataclass(frozen=True)
class ImportResult:
    fetched: int
    stored: int
    skipped: int


class TransactionImportService:
    """Entry point for the bank-sync job; appends rows, never rewrites them."""

    def __init__(self, session: Session, user_id: Optional[str]) -> None:
        self.session = session
        self.user_id = _require_user(user_id)

    def _label_lookup(self) -> dict[str, str]:
        stmt = (
            select(CategoryMapping)
            .where(CategoryMapping.user_id == self.user_id)
            .order_by(CategoryMapping.created_at, CategoryMapping.id)
        )
        # Later mappings overwrite earlier ones, matching relabel-on-add.
        return {m.subcategory: m.category for m in _fetch_all(self.session, stmt, "categories")}

    def import_batch(self, data: ImportBatchIn) -> ImportResult:
        rows = data.transactions
        if not rows:
            return ImportResult(0, 0, 0)

        ids = {row.transaction_id for row in rows}
        stmt = select(Transaction.external_id).where(
            Transaction.user_id == self.user_id, Transaction.external_id.in_(ids)
        )
        seen = set(_fetch_all(self.session, stmt, "transactions"))
        labels = self._label_lookup()

        stored = 0
        for row in rows:
            if row.transaction_id in seen:
                continue
            seen.add(row.transaction_id)
            subcategory = (row.subcategory or "").strip() or "Unknown"
            self.session.add(
                Transaction(
                    user_id=self.user_id,
                    external_id=row.transaction_id,
                    item_id=data.item_id,
                    account_id=row.account_id,
                    date=row.date,
                    occurred_at=row.occurred_at or datetime.combine(row.date, time.min),
                    amount_cents=row.amount_cents,
                    name=row.name,
                    merchant_name=row.merchant_name,
                    raw_category=(row.category or "").strip() or "Unknown",
                    subcategory=subcategory,
                    category=labels.get(subcategory),
                )
            )
            stored += 1
        _commit(self.session, "Storing imported transactions")

        result = ImportResult(fetched=len(rows), stored=stored, skipped=len(rows) - stored)
        logger.info(
            f"transaction_import: user={self.user_id} item={data.item_id}"
            f" fetched={result.fetched} stored={result.stored} skipped={result.skipped}"
        )
        return result
