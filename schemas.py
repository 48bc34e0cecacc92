from datetime import date, datetime
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from models import Granularity

AmountInput = Union[str, float, int, None]


class CategoryMappingIn(BaseModel):
    category: str = Field(..., max_length=100)
    subcategory: str = Field(..., max_length=200)


class BudgetSaveIn(BaseModel):
    """Income and per-category allocations as entered, in ``granularity`` units."""

    granularity: Granularity = Granularity.monthly
    income: AmountInput = None
    allocations: dict[str, AmountInput] = Field(default_factory=dict)


class SavingsGoalIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    target_cents: int = Field(..., gt=0)
    target_date: date
    description: Optional[str] = Field(default=None, max_length=500)


class SavingsGoalProgressIn(BaseModel):
    current_cents: int = Field(..., ge=0)


class ImportedTransactionIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    transaction_id: str = Field(..., min_length=1, max_length=100)
    account_id: Optional[str] = Field(default=None, max_length=100)
    amount_cents: int
    date: date
    occurred_at: Optional[datetime] = None
    name: str = Field(..., min_length=1, max_length=200)
    merchant_name: Optional[str] = Field(default=None, max_length=200)
    category: Optional[str] = Field(default=None, max_length=100)
    subcategory: Optional[str] = Field(default=None, max_length=200)


class ImportBatchIn(BaseModel):
    item_id: Optional[str] = Field(default=None, max_length=100)
    transactions: list[ImportedTransactionIn] = Field(default_factory=list)


class IdentityTokenIn(BaseModel):
    token: str = Field(..., min_length=1)
