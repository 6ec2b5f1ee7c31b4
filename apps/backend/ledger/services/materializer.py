from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy.orm import Session

from ledger import models
from ledger.services.recurrence_schedule import Schedule, occurrences_between
from ledger.utils.periods import period_bounds

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def installment_amount(total: Decimal, count: int, index: int) -> Decimal:
    """Amount of the ``index``-th (0-based) of ``count`` installments.

    Each installment is the total divided evenly and rounded to cents; the
    last one absorbs the rounding remainder so the installments add up to the
    total exactly.
    """
    total = Decimal(total)
    base = (total / count).quantize(CENT, rounding=ROUND_HALF_UP)
    if index == count - 1:
        return (total - base * (count - 1)).quantize(CENT, rounding=ROUND_HALF_UP)
    return base


def installment_description(base: str | None, ordinal: int, count: int) -> str:
    label = f"{ordinal}/{count}"
    if not base:
        return f"Installment {label}"
    return f"{base} ({label})"


@dataclass(frozen=True)
class OccurrenceValues:
    """Field values a generated transaction carries for one occurrence."""

    date: date
    amount: Decimal
    description: str | None
    category_id: int
    type: models.TxnType


@dataclass
class MaterializeResult:
    created: list[models.Transaction] = field(default_factory=list)
    existing: list[models.Transaction] = field(default_factory=list)

    @property
    def transactions(self) -> list[models.Transaction]:
        return sorted(self.existing + self.created, key=lambda t: (t.date, t.id or 0))


@dataclass
class PeriodReconciliation:
    """Tagged rows of one period split against the recurrence-derived values."""

    expected: dict[date, OccurrenceValues]
    unchanged: dict[date, list[models.Transaction]]
    conflicts: list[models.Transaction]

    @property
    def missing_dates(self) -> list[date]:
        return [d for d in sorted(self.expected) if d not in self.unchanged]


class TransactionMaterializer:
    """Create, update and remove the transactions generated by a recurrence.

    Rows are matched to a recurrence through ``Transaction.recurring_id``.
    Nothing here commits; the lifecycle manager owns the database transaction.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    # ---- Occurrence values -------------------------------------------------
    @staticmethod
    def generation_schedule(rule: models.RecurringTransaction) -> Schedule:
        """Schedule used for generating rows.

        Installment recurrences are not cut off at the N-th scheduled date:
        dates skipped while paused do not use up installments, so generation
        continues until N dates carry a row.
        """
        schedule = Schedule.from_recurrence(rule)
        if rule.max_occurrences:
            return replace(schedule, max_occurrences=None)
        return schedule

    def occurrence_values(self, rule: models.RecurringTransaction, day: date, ordinal: int | None = None) -> OccurrenceValues:
        amount = Decimal(rule.amount).quantize(CENT, rounding=ROUND_HALF_UP)
        description = rule.description
        if rule.max_occurrences and ordinal is not None:
            amount = installment_amount(rule.amount, rule.max_occurrences, ordinal)
            description = installment_description(rule.description, ordinal + 1, rule.max_occurrences)
        return OccurrenceValues(
            date=day,
            amount=amount,
            description=description,
            category_id=rule.category_id,
            type=models.TxnType(rule.type),
        )

    def expected_between(self, rule: models.RecurringTransaction, start: date, end: date) -> dict[date, OccurrenceValues]:
        """Derived values for every occurrence in ``[start, end]``.

        An installment's ordinal is the number of distinct dates before it that
        already carry a row (or get one in this window); once N dates are
        covered nothing more is expected.
        """
        dates = occurrences_between(self.generation_schedule(rule), max(start, rule.start_date), end)
        result: dict[date, OccurrenceValues] = {}
        if not rule.max_occurrences:
            for day in dates:
                result[day] = self.occurrence_values(rule, day)
            return result

        taken = self.tagged_dates(rule.id, through=end) if dates else set()
        for day in dates:
            ordinal = len({d for d in taken if d < day} | set(result))
            if ordinal >= rule.max_occurrences:
                break
            result[day] = self.occurrence_values(rule, day, ordinal)
        return result

    @staticmethod
    def is_modified(txn: models.Transaction, values: OccurrenceValues) -> bool:
        return (
            txn.date != values.date
            or Decimal(txn.amount).quantize(CENT) != values.amount
            or txn.category_id != values.category_id
            or models.TxnType(txn.type) != values.type
            or (txn.description or None) != (values.description or None)
        )

    # ---- Queries -----------------------------------------------------------
    def tagged_dates(self, rule_id: int, *, through: date) -> set[date]:
        rows = (
            self.db.query(models.Transaction.date)
            .filter(models.Transaction.recurring_id == rule_id, models.Transaction.date <= through)
            .distinct()
            .all()
        )
        return {row[0] for row in rows}

    def tagged_between(self, rule_id: int, start: date | None = None, end: date | None = None) -> list[models.Transaction]:
        q = self.db.query(models.Transaction).filter(models.Transaction.recurring_id == rule_id)
        if start is not None:
            q = q.filter(models.Transaction.date >= start)
        if end is not None:
            q = q.filter(models.Transaction.date <= end)
        return q.order_by(models.Transaction.date, models.Transaction.id).all()

    # ---- Writes ------------------------------------------------------------
    def create_occurrence(self, rule: models.RecurringTransaction, values: OccurrenceValues) -> models.Transaction:
        txn = models.Transaction(
            user_id=rule.user_id,
            category_id=values.category_id,
            type=values.type,
            amount=values.amount,
            description=values.description,
            date=values.date,
            recurring_id=rule.id,
        )
        self.db.add(txn)
        return txn

    @staticmethod
    def apply_values(txn: models.Transaction, values: OccurrenceValues) -> None:
        txn.date = values.date
        txn.amount = values.amount
        txn.description = values.description
        txn.category_id = values.category_id
        txn.type = values.type

    def materialize(self, rule: models.RecurringTransaction, start: date, end: date) -> MaterializeResult:
        """Ensure one generated row exists per occurrence date in ``[start, end]``.

        Idempotent: dates that already have a tagged row (edited or not) are
        left untouched.
        """
        result = MaterializeResult()
        expected = self.expected_between(rule, start, end)
        if expected:
            by_date: dict[date, list[models.Transaction]] = defaultdict(list)
            for txn in self.tagged_between(rule.id, min(expected), max(expected)):
                by_date[txn.date].append(txn)
            for day, values in expected.items():
                if by_date.get(day):
                    result.existing.extend(by_date[day])
                    continue
                result.created.append(self.create_occurrence(rule, values))
            self.db.flush()
        self.advance_generated_through(rule, end)
        if result.created:
            logger.info(
                "Materialized %d occurrence(s) for recurring %s between %s and %s",
                len(result.created),
                rule.id,
                start,
                end,
            )
        return result

    def reconcile_period(self, rule: models.RecurringTransaction, start: date, end: date) -> PeriodReconciliation:
        """Split the period's tagged rows into unchanged rows and conflicts.

        A row is unchanged when it sits on a scheduled date and still carries
        the derived values; anything else was edited by hand.
        """
        expected = self.expected_between(rule, start, end)
        unchanged: dict[date, list[models.Transaction]] = defaultdict(list)
        conflicts: list[models.Transaction] = []
        for txn in self.tagged_between(rule.id, start, end):
            values = expected.get(txn.date)
            if values is not None and not self.is_modified(txn, values):
                unchanged[txn.date].append(txn)
            else:
                conflicts.append(txn)
        return PeriodReconciliation(expected=expected, unchanged=dict(unchanged), conflicts=conflicts)

    def remove_for_delete(self, rule: models.RecurringTransaction, mode: models.DeleteMode, today: date) -> tuple[int, int]:
        """Delete tagged rows selected by ``mode`` and detach the rest.

        Returns (deleted, detached).
        """
        first_day, last_day = period_bounds(today)
        q = self.db.query(models.Transaction).filter(models.Transaction.recurring_id == rule.id)
        if mode == models.DeleteMode.ALL:
            doomed = q
        elif mode == models.DeleteMode.FUTURE_AND_CURRENT:
            doomed = q.filter(models.Transaction.date >= first_day)
        elif mode == models.DeleteMode.FUTURE_ONLY:
            doomed = q.filter(models.Transaction.date > last_day)
        else:  # pragma: no cover - guarded by the lifecycle manager
            raise ValueError(f"Unsupported delete mode: {mode}")

        deleted = doomed.delete(synchronize_session=False)
        detached = q.update({models.Transaction.recurring_id: None}, synchronize_session=False)
        self.db.expire_all()
        return int(deleted or 0), int(detached or 0)

    @staticmethod
    def advance_generated_through(rule: models.RecurringTransaction, end: date) -> None:
        if rule.generated_through is None or rule.generated_through < end:
            rule.generated_through = end
