"""initial budget schema

Revision ID: 202507010900
Revises:
Create Date: 2025-07-01 09:00:00.000000

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "202507010900"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column("subcategory", sa.String(length=200), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint(
            "user_id", "category", "subcategory", name="uq_category_user_pair"
        ),
    )
    op.create_index(
        "ix_categories_user_subcategory", "categories", ["user_id", "subcategory"]
    )

    op.create_table(
        "allocations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("category", sa.String(length=100), nullable=True),
        sa.Column("weekly_rate_cents", sa.Integer(), nullable=True),
        sa.Column("income_cents", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("user_id", "category", name="uq_allocation_user_category"),
        sa.CheckConstraint(
            "(category IS NULL AND income_cents IS NOT NULL AND weekly_rate_cents IS NULL)"
            " OR (category IS NOT NULL AND weekly_rate_cents IS NOT NULL"
            " AND income_cents IS NULL)",
            name="ck_allocation_income_xor_category",
        ),
    )
    # NULL categories never collide under the unique constraint above.
    op.create_index(
        "uq_allocation_user_income",
        "allocations",
        ["user_id"],
        unique=True,
        sqlite_where=sa.text("category IS NULL"),
        postgresql_where=sa.text("category IS NULL"),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("external_id", sa.String(length=100), nullable=True),
        sa.Column("item_id", sa.String(length=100), nullable=True),
        sa.Column("account_id", sa.String(length=100), nullable=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("occurred_at", sa.DateTime(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("merchant_name", sa.String(length=200), nullable=True),
        sa.Column(
            "raw_category", sa.String(length=100), nullable=False, server_default="Unknown"
        ),
        sa.Column(
            "subcategory", sa.String(length=200), nullable=False, server_default="Unknown"
        ),
        sa.Column("category", sa.String(length=100), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("user_id", "external_id", name="uq_txn_user_external"),
    )
    op.create_index(
        "ix_transactions_user_occurred", "transactions", ["user_id", "occurred_at"]
    )
    op.create_index(
        "ix_transactions_user_category_occurred",
        "transactions",
        ["user_id", "category", "occurred_at"],
    )
    op.create_index(
        "ix_transactions_user_subcategory", "transactions", ["user_id", "subcategory"]
    )

    op.create_table(
        "savings_goals",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("target_cents", sa.Integer(), nullable=False),
        sa.Column("current_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("target_date", sa.Date(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("target_cents > 0", name="ck_goal_target_positive"),
        sa.CheckConstraint("current_cents >= 0", name="ck_goal_current_non_negative"),
    )
    op.create_index("ix_savings_goals_user", "savings_goals", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_savings_goals_user", table_name="savings_goals")
    op.drop_table("savings_goals")
    op.drop_index("ix_transactions_user_subcategory", table_name="transactions")
    op.drop_index("ix_transactions_user_category_occurred", table_name="transactions")
    op.drop_index("ix_transactions_user_occurred", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("uq_allocation_user_income", table_name="allocations")
    op.drop_table("allocations")
    op.drop_index("ix_categories_user_subcategory", table_name="categories")
    op.drop_table("categories")
