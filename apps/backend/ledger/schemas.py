from __future__ import annotations

import math
from datetime import date, datetime
import datetime as dt
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .models import RecurringFrequency, TxnType


class CategoryCreate(BaseModel):
    name: str
    type: TxnType

    @field_validator("name")
    def name_not_blank(cls, v: str):
        v = v.strip()
        if not v:
            raise ValueError("name must not be empty")
        return v


class CategoryOut(BaseModel):
    id: int
    user_id: int
    name: str
    type: TxnType
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


def _positive_finite(v: Decimal | None):
    if v is None:
        return v
    if not math.isfinite(v):
        raise ValueError("amount must be finite")
    if v <= 0:
        raise ValueError("amount must be positive")
    return v


class TransactionCreate(BaseModel):
    category_id: int
    type: TxnType
    amount: Decimal
    description: Optional[str] = None
    date: dt.date

    @field_validator("amount")
    def amount_positive(cls, v: Decimal):
        return _positive_finite(v)


class TransactionUpdate(BaseModel):
    category_id: Optional[int] = None
    type: Optional[TxnType] = None
    amount: Optional[Decimal] = None
    description: Optional[str] = None
    date: Optional[dt.date] = None

    @field_validator("amount")
    def amount_positive(cls, v: Decimal | None):
        return _positive_finite(v)


class TransactionOut(BaseModel):
    id: int
    user_id: int
    category_id: int
    category_name: Optional[str] = None
    type: TxnType
    amount: float
    description: Optional[str]
    date: dt.date
    recurring_id: Optional[int]
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TransactionPage(BaseModel):
    data: list[TransactionOut]
    total: int
    page: int
    per_page: int
    total_pages: int


class RecurringTransactionCreate(BaseModel):
    """Recurrence definition.

    Semantic checks (positive amount, a single end condition, day anchoring)
    run in ``RecurrenceService`` so every caller gets the same errors.
    """

    type: TxnType
    amount: Decimal
    description: Optional[str] = None
    category_id: int
    frequency: RecurringFrequency
    start_date: date
    end_date: Optional[date] = None
    max_occurrences: Optional[int] = None
    day_of_month: Optional[int] = None


class RecurringTransactionOut(BaseModel):
    id: int
    user_id: int
    category_id: int
    category_name: Optional[str] = None
    type: TxnType
    amount: float
    description: Optional[str]
    frequency: RecurringFrequency
    start_date: date
    end_date: Optional[date]
    max_occurrences: Optional[int]
    day_of_month: Optional[int]
    is_active: bool
    paused_at: Optional[datetime]
    generated_through: Optional[date]
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RecurringTransactionPage(BaseModel):
    data: list[RecurringTransactionOut]
    total: int
    page: int
    per_page: int
    total_pages: int


class RecurringResumeRequest(BaseModel):
    # "update" | "create"; validated by the service so unknown values give 400
    on_conflict: Optional[str] = None


class RecurringDeleteRequest(BaseModel):
    mode: str


class RecurringResumeConflictOut(BaseModel):
    detail: str
    conflict: bool = True
    recurring_transaction: RecurringTransactionOut
    existing_transactions: list[TransactionOut] = Field(default_factory=list)


class RecurringOccurrencesOut(BaseModel):
    items: list[date]
    total_count: int
