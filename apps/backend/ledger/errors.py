"""
Domain errors raised by the recurrence services.

The HTTP layer maps each class to a status code (see ``ledger.main``); the
services themselves never deal with transport details.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from ledger import models


class LedgerError(Exception):
    status_code = 500

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class ValidationError(LedgerError):
    """Malformed input: end conditions, amounts, strategies, delete modes."""

    status_code = 400


class NotFoundError(LedgerError):
    """Unknown id, or a row owned by another user."""

    status_code = 404


class InvalidStateError(LedgerError):
    """Transition not permitted from the current state."""

    status_code = 409


class ConflictError(LedgerError):
    """Resume blocked by manually modified transactions in the current period.

    Recoverable: the caller picks an ``on_conflict`` strategy and retries.
    """

    status_code = 409

    def __init__(
        self,
        recurrence: "models.RecurringTransaction",
        existing_transactions: Sequence["models.Transaction"],
        detail: str = "Current period already has modified transactions for this recurrence",
    ) -> None:
        super().__init__(detail)
        self.recurrence = recurrence
        self.existing_transactions = list(existing_transactions)
