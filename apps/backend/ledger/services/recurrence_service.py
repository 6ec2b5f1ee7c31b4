from __future__ import annotations

import logging
import math
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from threading import Lock
from typing import Any, Callable, Iterator, Optional

from sqlalchemy.orm import Session, selectinload

from ledger import errors, models
from ledger.core.config import settings
from ledger.services.conflict_resolver import ConflictResolver, Resolution, parse_strategy
from ledger.services.materializer import TransactionMaterializer, installment_amount
from ledger.services.recurrence_schedule import Schedule, occurrences_between
from ledger.utils.periods import period_bounds

logger = logging.getLogger(__name__)

_DAY_ANCHORED = (models.RecurringFrequency.MONTHLY, models.RecurringFrequency.YEARLY)

# One lock per recurrence id: check-then-create must not interleave within a
# process. Across processes the row lock taken in _locked_rule does the same.
_LOCKS_GUARD = Lock()
_RECURRENCE_LOCKS: dict[int, Lock] = {}


@contextmanager
def recurrence_lock(rule_id: int) -> Iterator[None]:
    with _LOCKS_GUARD:
        lock = _RECURRENCE_LOCKS.setdefault(rule_id, Lock())
    with lock:
        yield


def _forget_lock(rule_id: int) -> None:
    with _LOCKS_GUARD:
        _RECURRENCE_LOCKS.pop(rule_id, None)


@dataclass
class Page:
    data: list[models.RecurringTransaction]
    total: int
    page: int
    per_page: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.per_page) if self.per_page else 0


@dataclass
class DeleteResult:
    recurring_id: int
    mode: models.DeleteMode
    deleted: int
    detached: int


@dataclass
class ResumeResult:
    recurrence: models.RecurringTransaction
    created: list[models.Transaction] = field(default_factory=list)
    resolution: Optional[Resolution] = None


class RecurrenceService:
    """Lifecycle of recurring transactions: create, pause, resume, delete.

    State lives in ``paused_at`` (see ``RecurringTransaction.state``). Every
    write runs under the per-recurrence lock and commits once, so readers never
    see a half-materialized period.
    """

    def __init__(self, db: Session, *, clock: Callable[[], datetime] | None = None) -> None:
        self.db = db
        self.clock = clock or models.now_local_naive
        self.materializer = TransactionMaterializer(db)
        self.resolver = ConflictResolver(self.materializer)

    def today(self) -> date:
        return self.clock().date()

    # ---- Reads -------------------------------------------------------------
    def get(self, user_id: int, rule_id: int) -> models.RecurringTransaction:
        rule = (
            self.db.query(models.RecurringTransaction)
            .options(selectinload(models.RecurringTransaction.category))
            .filter(models.RecurringTransaction.id == rule_id, models.RecurringTransaction.user_id == user_id)
            .first()
        )
        if not rule:
            raise errors.NotFoundError("Recurring transaction not found")
        return rule

    def list_recurrences(
        self,
        *,
        user_id: int,
        type: models.TxnType | str | None = None,
        is_active: bool | None = None,
        page: int = 1,
        per_page: int | None = None,
    ) -> Page:
        page = max(int(page or 1), 1)
        per_page = int(per_page or settings.DEFAULT_PAGE_SIZE)
        per_page = min(max(per_page, 1), settings.MAX_PAGE_SIZE)

        q = self.db.query(models.RecurringTransaction).filter(models.RecurringTransaction.user_id == user_id)
        if type:
            q = q.filter(models.RecurringTransaction.type == self._parse_type(type))
        if is_active is not None:
            q = q.filter(models.RecurringTransaction.is_active == bool(is_active))
        total = q.count()
        rows = (
            q.options(selectinload(models.RecurringTransaction.category))
            .order_by(models.RecurringTransaction.created_at.desc(), models.RecurringTransaction.id.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
            .all()
        )
        return Page(data=rows, total=total, page=page, per_page=per_page)

    def preview(self, user_id: int, rule_id: int, start: date, end: date) -> list[date]:
        rule = self.get(user_id, rule_id)
        if end < start:
            raise errors.ValidationError("end must not be before start")
        return occurrences_between(Schedule.from_recurrence(rule), start, end)

    # ---- Transitions -------------------------------------------------------
    def create(self, payload: dict[str, Any], *, user_id: int) -> models.RecurringTransaction:
        data = self._validate_definition(payload, user_id=user_id)
        today = self.today()
        rule = models.RecurringTransaction(user_id=user_id, **data)
        self.db.add(rule)
        try:
            self.db.flush()
            with recurrence_lock(rule.id):
                _, period_end = period_bounds(today)
                result = self.materializer.materialize(rule, rule.start_date, period_end)
                self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(rule)
        logger.info(
            "Created recurring %s (%s, %s) with %d transaction(s) through %s",
            rule.id,
            rule.frequency.value,
            rule.type.value,
            len(result.created),
            period_end,
        )
        return rule

    def pause(self, user_id: int, rule_id: int) -> models.RecurringTransaction:
        with self._locked_rule(user_id, rule_id) as rule:
            if isinstance(rule.state, models.Paused):
                raise errors.InvalidStateError("Recurring transaction is already paused")
            rule.state = models.Paused(paused_at=self.clock())
        self.db.refresh(rule)
        logger.info("Paused recurring %s at %s", rule.id, rule.paused_at)
        return rule

    def resume(
        self,
        user_id: int,
        rule_id: int,
        on_conflict: str | models.ConflictStrategy | None = None,
    ) -> ResumeResult:
        """Reactivate a paused recurrence and materialize the current period.

        Generated rows of the current period that were edited by hand block
        the resume with ``ConflictError`` unless ``on_conflict`` says how to
        treat them. The conflict set is re-read here, under the lock, never
        taken from an earlier response.
        """
        strategy = parse_strategy(on_conflict)
        first_day, last_day = period_bounds(self.today())
        with self._locked_rule(user_id, rule_id) as rule:
            if isinstance(rule.state, models.Active):
                raise errors.InvalidStateError("Recurring transaction is already active")

            reconciliation = self.materializer.reconcile_period(rule, first_day, last_day)
            if reconciliation.conflicts and strategy is None:
                logger.warning(
                    "Resume of recurring %s blocked by %d modified transaction(s)",
                    rule.id,
                    len(reconciliation.conflicts),
                )
                raise errors.ConflictError(rule, reconciliation.conflicts)

            rule.state = models.Active()
            result = ResumeResult(recurrence=rule)
            if reconciliation.conflicts:
                result.resolution = self.resolver.resolve(rule, reconciliation, strategy)
                result.created = list(result.resolution.created)
                self.materializer.advance_generated_through(rule, last_day)
            else:
                result.created = self.materializer.materialize(rule, first_day, last_day).created
        self.db.refresh(rule)
        logger.info("Resumed recurring %s; %d transaction(s) created", rule.id, len(result.created))
        return result

    def delete(self, user_id: int, rule_id: int, mode: str | models.DeleteMode) -> DeleteResult:
        parsed = self._parse_delete_mode(mode)
        today = self.today()
        with self._locked_rule(user_id, rule_id) as rule:
            deleted, detached = self.materializer.remove_for_delete(rule, parsed, today)
            self.db.delete(rule)
        _forget_lock(rule_id)
        logger.info(
            "Deleted recurring %s (mode=%s): %d transaction(s) removed, %d kept and detached",
            rule_id,
            parsed.value,
            deleted,
            detached,
        )
        return DeleteResult(recurring_id=rule_id, mode=parsed, deleted=deleted, detached=detached)

    def materialize_due(self, *, user_id: int | None = None) -> dict[int, int]:
        """Roll every active recurrence forward to the end of the current period.

        Returns the number of created transactions per recurrence id. Meant to
        run daily; a recurrence already covered through the period end is a
        no-op.
        """
        _, last_day = period_bounds(self.today())
        q = self.db.query(models.RecurringTransaction.id, models.RecurringTransaction.user_id).filter(
            models.RecurringTransaction.is_active == True  # noqa: E712
        )
        if user_id is not None:
            q = q.filter(models.RecurringTransaction.user_id == user_id)
        candidates = q.order_by(models.RecurringTransaction.id).all()

        created: dict[int, int] = {}
        for rule_id, owner_id in candidates:
            try:
                with self._locked_rule(owner_id, rule_id) as rule:
                    if not rule.is_active:
                        continue
                    if rule.generated_through is not None and rule.generated_through >= last_day:
                        continue
                    start = rule.start_date
                    if rule.generated_through is not None:
                        start = max(start, rule.generated_through)
                    created[rule_id] = len(self.materializer.materialize(rule, start, last_day).created)
            except errors.NotFoundError:
                # deleted between listing and locking
                continue
        return created

    # ---- Helpers -----------------------------------------------------------
    @contextmanager
    def _locked_rule(self, user_id: int, rule_id: int) -> Iterator[models.RecurringTransaction]:
        """Serialize work on one recurrence and commit it as one transaction."""
        with recurrence_lock(rule_id):
            try:
                rule = (
                    self.db.query(models.RecurringTransaction)
                    .filter(
                        models.RecurringTransaction.id == rule_id,
                        models.RecurringTransaction.user_id == user_id,
                    )
                    .with_for_update()
                    .first()
                )
                if not rule:
                    raise errors.NotFoundError("Recurring transaction not found")
                yield rule
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

    @staticmethod
    def _parse_type(value: models.TxnType | str) -> models.TxnType:
        try:
            return models.TxnType(value)
        except ValueError:
            raise errors.ValidationError("type must be income or expense") from None

    @staticmethod
    def _parse_delete_mode(value: str | models.DeleteMode) -> models.DeleteMode:
        try:
            return models.DeleteMode(value)
        except ValueError:
            allowed = ", ".join(m.value for m in models.DeleteMode)
            raise errors.ValidationError(f"mode must be one of: {allowed}") from None

    def _validate_definition(self, payload: dict[str, Any], *, user_id: int) -> dict[str, Any]:
        data = dict(payload)
        txn_type = self._parse_type(data.get("type"))
        try:
            frequency = models.RecurringFrequency(data.get("frequency"))
        except ValueError:
            raise errors.ValidationError("invalid frequency") from None

        try:
            amount = Decimal(str(data.get("amount")))
        except (InvalidOperation, TypeError):
            raise errors.ValidationError("amount must be a number") from None
        if not amount.is_finite() or amount <= 0:
            raise errors.ValidationError("amount must be positive")

        start_date = data.get("start_date")
        if not isinstance(start_date, date):
            raise errors.ValidationError("start_date is required")
        end_date = data.get("end_date")
        max_occurrences = data.get("max_occurrences")
        if end_date is not None and max_occurrences is not None:
            raise errors.ValidationError("end_date and max_occurrences are mutually exclusive")
        if end_date is not None and end_date < start_date:
            raise errors.ValidationError("end_date must not be before start_date")
        if max_occurrences is not None:
            if int(max_occurrences) != max_occurrences or max_occurrences <= 0:
                raise errors.ValidationError("max_occurrences must be a positive integer")
            max_occurrences = int(max_occurrences)
            if installment_amount(amount, max_occurrences, 0) <= 0 or installment_amount(
                amount, max_occurrences, max_occurrences - 1
            ) <= 0:
                raise errors.ValidationError("amount is too small to split into max_occurrences installments")

        day_of_month = data.get("day_of_month")
        if frequency in _DAY_ANCHORED:
            if day_of_month is None:
                day_of_month = start_date.day
            elif frequency == models.RecurringFrequency.YEARLY and day_of_month != start_date.day:
                raise errors.ValidationError("yearly recurrences repeat on the start_date day")
            elif not (1 <= int(day_of_month) <= 31):
                raise errors.ValidationError("day_of_month must be between 1 and 31")
        elif day_of_month is not None:
            raise errors.ValidationError("day_of_month only applies to monthly and yearly recurrences")

        category = (
            self.db.query(models.Category)
            .filter(models.Category.id == data.get("category_id"), models.Category.user_id == user_id)
            .first()
        )
        if not category:
            raise errors.ValidationError("category not found")
        if category.type != txn_type:
            raise errors.ValidationError("category type does not match transaction type")

        description = (data.get("description") or "").strip() or None
        return {
            "category_id": category.id,
            "type": txn_type,
            "amount": amount.quantize(Decimal("0.01")),
            "description": description,
            "frequency": frequency,
            "start_date": start_date,
            "end_date": end_date,
            "max_occurrences": max_occurrences,
            "day_of_month": int(day_of_month) if day_of_month is not None else None,
        }
