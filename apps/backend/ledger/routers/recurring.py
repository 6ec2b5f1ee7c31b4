"""Recurring transactions router."""

from fastapi import APIRouter

from ledger.api.recurring import handlers
from ledger.schemas import (
    RecurringOccurrencesOut,
    RecurringResumeConflictOut,
    RecurringTransactionOut,
    RecurringTransactionPage,
)

router = APIRouter(prefix="/recurring-transactions", tags=["recurring-transactions"])

router.add_api_route(
    "",
    handlers.list_recurring_transactions,
    methods=["GET"],
    response_model=RecurringTransactionPage,
)

router.add_api_route(
    "",
    handlers.create_recurring_transaction,
    methods=["POST"],
    response_model=RecurringTransactionOut,
    status_code=201,
)

router.add_api_route(
    "/{recurring_id}",
    handlers.get_recurring_transaction,
    methods=["GET"],
    response_model=RecurringTransactionOut,
)

router.add_api_route(
    "/{recurring_id}",
    handlers.delete_recurring_transaction,
    methods=["DELETE"],
    status_code=204,
)

router.add_api_route(
    "/{recurring_id}/occurrences",
    handlers.preview_occurrences,
    methods=["GET"],
    response_model=RecurringOccurrencesOut,
)

router.add_api_route(
    "/{recurring_id}/pause",
    handlers.pause_recurring_transaction,
    methods=["POST"],
    response_model=RecurringTransactionOut,
)

router.add_api_route(
    "/{recurring_id}/resume",
    handlers.resume_recurring_transaction,
    methods=["POST"],
    response_model=RecurringTransactionOut,
    responses={409: {"model": RecurringResumeConflictOut}},
)
