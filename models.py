from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from database import Base


class Granularity(str, Enum):
    weekly = "weekly"
    monthly = "monthly"
    yearly = "yearly"


class Direction(str, Enum):
    prev = "prev"
    next = "next"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class CategoryMapping(Base, TimestampMixin):
    """One raw aggregator label rolled up into a user-defined category."""

    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    subcategory: Mapped[str] = mapped_column(String(200), nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "user_id", "category", "subcategory", name="uq_category_user_pair"
        ),
        Index("ix_categories_user_subcategory", "user_id", "subcategory"),
    )


class Allocation(Base, TimestampMixin):
    """Weekly allocation rate for a category, or the per-user income row.

    The income row has ``category`` NULL and carries ``income_cents``; category
    rows carry ``weekly_rate_cents`` and leave ``income_cents`` NULL.
    """

    __tablename__ = "allocations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(100))
    weekly_rate_cents: Mapped[Optional[int]] = mapped_column(Integer)
    income_cents: Mapped[Optional[int]] = mapped_column(Integer)

    __table_args__ = (
        UniqueConstraint("user_id", "category", name="uq_allocation_user_category"),
        Index(
            "uq_allocation_user_income",
            "user_id",
            unique=True,
            sqlite_where=text("category IS NULL"),
            postgresql_where=text("category IS NULL"),
        ),
        CheckConstraint(
            "(category IS NULL AND income_cents IS NOT NULL AND weekly_rate_cents IS NULL)"
            " OR (category IS NOT NULL AND weekly_rate_cents IS NOT NULL"
            " AND income_cents IS NULL)",
            name="ck_allocation_income_xor_category",
        ),
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    external_id: Mapped[Optional[str]] = mapped_column(String(100))
    item_id: Mapped[Optional[str]] = mapped_column(String(100))
    account_id: Mapped[Optional[str]] = mapped_column(String(100))
    date: Mapped[date] = mapped_column(Date, nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    # Positive amounts are debits (expenses); credits are negative.
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    merchant_name: Mapped[Optional[str]] = mapped_column(String(200))
    raw_category: Mapped[str] = mapped_column(
        String(100), nullable=False, default="Unknown"
    )
    subcategory: Mapped[str] = mapped_column(
        String(200), nullable=False, default="Unknown"
    )
    category: Mapped[Optional[str]] = mapped_column(String(100))

    __table_args__ = (
        UniqueConstraint("user_id", "external_id", name="uq_txn_user_external"),
        Index("ix_transactions_user_occurred", "user_id", "occurred_at"),
        Index(
            "ix_transactions_user_category_occurred",
            "user_id",
            "category",
            "occurred_at",
        ),
        Index("ix_transactions_user_subcategory", "user_id", "subcategory"),
    )


class SavingsGoal(Base, TimestampMixin):
    __tablename__ = "savings_goals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    target_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    current_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    target_date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        CheckConstraint("target_cents > 0", name="ck_goal_target_positive"),
        CheckConstraint("current_cents >= 0", name="ck_goal_current_non_negative"),
        Index("ix_savings_goals_user", "user_id"),
    )
