from __future__ import annotations

from dataclasses import dataclass
import datetime as dt
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from zoneinfo import ZoneInfo

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.ext.hybrid import hybrid_property

from .core.config import settings
from .core.database import Base


try:
    LOCAL_ZONE = ZoneInfo(getattr(settings, "TIMEZONE", "UTC"))
except Exception:
    LOCAL_ZONE = timezone.utc


def now_local_naive() -> datetime:
    """Return naive datetime normalized to configured local timezone."""
    return datetime.now(LOCAL_ZONE).replace(tzinfo=None)


def today_local() -> date:
    return now_local_naive().date()


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(DateTime, default=now_local_naive, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=now_local_naive, onupdate=now_local_naive, nullable=False)


class User(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(120))
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)


class TxnType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"


class Category(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("user.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[TxnType] = mapped_column(SAEnum(TxnType, name="txn_type"), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "type", "name", name="uq_category_user_type_name"),
    )


class RecurringFrequency(str, Enum):
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class DeleteMode(str, Enum):
    ALL = "all"
    FUTURE_AND_CURRENT = "future_and_current"
    FUTURE_ONLY = "future_only"


class ConflictStrategy(str, Enum):
    UPDATE = "update"
    CREATE = "create"


@dataclass(frozen=True)
class Active:
    """Recurrence is generating occurrences."""


@dataclass(frozen=True)
class Paused:
    paused_at: datetime


RecurrenceState = Active | Paused


class RecurringTransaction(Base, TimestampMixin):
    __tablename__ = "recurring_transaction"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("user.id", ondelete="CASCADE"), nullable=False)
    category_id: Mapped[int] = mapped_column(ForeignKey("category.id"), nullable=False)
    type: Mapped[TxnType] = mapped_column(SAEnum(TxnType, name="txn_type"), nullable=False)
    # per-occurrence amount, or the installment total when max_occurrences is set
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    frequency: Mapped[RecurringFrequency] = mapped_column(
        SAEnum(RecurringFrequency, name="recurring_frequency"), nullable=False
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date)
    max_occurrences: Mapped[int | None] = mapped_column(Integer)
    day_of_month: Mapped[int | None] = mapped_column(Integer)  # monthly/yearly only
    # Paused <=> paused_at IS NOT NULL; there is no separate active flag to drift
    paused_at: Mapped[datetime | None] = mapped_column(DateTime)
    generated_through: Mapped[date | None] = mapped_column(Date)

    category: Mapped["Category"] = relationship("Category")

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_recurring_amount_positive"),
        CheckConstraint(
            "end_date IS NULL OR max_occurrences IS NULL",
            name="ck_recurring_single_end_condition",
        ),
        CheckConstraint(
            "max_occurrences IS NULL OR max_occurrences > 0",
            name="ck_recurring_max_occurrences_positive",
        ),
        Index("ix_recurring_user_created", "user_id", "created_at"),
    )

    @hybrid_property
    def is_active(self) -> bool:  # type: ignore[override]
        return self.paused_at is None

    @is_active.expression  # type: ignore[no-redef]
    def is_active(cls):
        return cls.paused_at.is_(None)

    @property
    def state(self) -> RecurrenceState:
        if self.paused_at is None:
            return Active()
        return Paused(paused_at=self.paused_at)

    @state.setter
    def state(self, value: RecurrenceState) -> None:
        if isinstance(value, Paused):
            self.paused_at = value.paused_at
        else:
            self.paused_at = None

    @property
    def category_name(self) -> str | None:
        return self.category.name if self.category is not None else None


class Transaction(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("user.id", ondelete="CASCADE"), nullable=False)
    category_id: Mapped[int] = mapped_column(ForeignKey("category.id"), nullable=False)
    type: Mapped[TxnType] = mapped_column(SAEnum(TxnType, name="txn_type"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    recurring_id: Mapped[int | None] = mapped_column(
        ForeignKey("recurring_transaction.id", ondelete="SET NULL"),
        nullable=True,
    )

    category: Mapped["Category"] = relationship("Category")

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_transaction_amount_positive"),
        Index("ix_transaction_recurring_date", "recurring_id", "date"),
        Index("ix_transaction_user_date", "user_id", "date"),
    )

    @property
    def category_name(self) -> str | None:
        return self.category.name if self.category is not None else None
