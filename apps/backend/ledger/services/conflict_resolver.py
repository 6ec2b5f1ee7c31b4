from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date

from ledger import errors, models
from ledger.services.materializer import PeriodReconciliation, TransactionMaterializer

logger = logging.getLogger(__name__)


def parse_strategy(value: str | models.ConflictStrategy | None) -> models.ConflictStrategy | None:
    if value is None or isinstance(value, models.ConflictStrategy):
        return value
    try:
        return models.ConflictStrategy(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(s.value for s in models.ConflictStrategy)
        raise errors.ValidationError(f"on_conflict must be one of: {allowed}") from None


@dataclass
class Resolution:
    strategy: models.ConflictStrategy
    updated: list[models.Transaction] = field(default_factory=list)
    created: list[models.Transaction] = field(default_factory=list)
    untouched: list[models.Transaction] = field(default_factory=list)


def _nearest(slots: list[date], desired: date) -> date:
    return min(slots, key=lambda d: (abs((d - desired).days), d))


class ConflictResolver:
    """Apply an ``on_conflict`` strategy to a blocked resume.

    ``update`` rewrites the conflicting rows to the recurrence-derived values
    (ids are kept); ``create`` leaves them alone and adds fresh generated rows
    next to them.
    """

    def __init__(self, materializer: TransactionMaterializer) -> None:
        self.materializer = materializer

    def resolve(
        self,
        rule: models.RecurringTransaction,
        reconciliation: PeriodReconciliation,
        strategy: str | models.ConflictStrategy,
    ) -> Resolution:
        parsed = parse_strategy(strategy)
        if parsed is None:
            raise errors.ValidationError("on_conflict is required to resolve a conflict")
        if parsed == models.ConflictStrategy.UPDATE:
            resolution = self._update_in_place(rule, reconciliation)
        else:
            resolution = self._create_alongside(rule, reconciliation)
        self.materializer.db.flush()
        logger.info(
            "Resolved resume conflict for recurring %s with %s: %d updated, %d created, %d untouched",
            rule.id,
            parsed.value,
            len(resolution.updated),
            len(resolution.created),
            len(resolution.untouched),
        )
        return resolution

    def _update_in_place(self, rule: models.RecurringTransaction, rec: PeriodReconciliation) -> Resolution:
        resolution = Resolution(strategy=models.ConflictStrategy.UPDATE)
        slots = rec.missing_dates
        pending: list[models.Transaction] = []

        # rows still on a free scheduled date keep that date
        for txn in rec.conflicts:
            if txn.date in slots:
                slots.remove(txn.date)
                self.materializer.apply_values(txn, rec.expected[txn.date])
                resolution.updated.append(txn)
            else:
                pending.append(txn)

        # rows moved off schedule go back to the closest free occurrence
        for txn in pending:
            if not slots:
                resolution.untouched.append(txn)
                continue
            target = _nearest(slots, txn.date)
            slots.remove(target)
            self.materializer.apply_values(txn, rec.expected[target])
            resolution.updated.append(txn)

        for day in slots:
            resolution.created.append(self.materializer.create_occurrence(rule, rec.expected[day]))

        if resolution.untouched:
            logger.warning(
                "Recurring %s: %d conflicting transaction(s) had no free occurrence to take",
                rule.id,
                len(resolution.untouched),
            )
        return resolution

    def _create_alongside(self, rule: models.RecurringTransaction, rec: PeriodReconciliation) -> Resolution:
        resolution = Resolution(strategy=models.ConflictStrategy.CREATE, untouched=list(rec.conflicts))
        for day in rec.missing_dates:
            resolution.created.append(self.materializer.create_occurrence(rule, rec.expected[day]))
        return resolution
