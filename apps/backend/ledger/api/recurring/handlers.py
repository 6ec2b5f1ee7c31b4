"""Recurring transaction handlers.

Thin adapters over ``RecurrenceService``: domain errors propagate to the
application-level handlers in ``ledger.main``, except a blocked resume, which
is answered here with the conflict payload while the session is still open.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Callable, Optional

from fastapi import Body, Depends, Query, Response
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ledger import errors, models
from ledger.core.config import settings
from ledger.core.database import get_db
from ledger.core.deps import get_clock, get_current_user
from ledger.schemas import (
    RecurringDeleteRequest,
    RecurringOccurrencesOut,
    RecurringResumeConflictOut,
    RecurringResumeRequest,
    RecurringTransactionCreate,
    RecurringTransactionOut,
    RecurringTransactionPage,
    TransactionOut,
)
from ledger.services import RecurrenceService


def list_recurring_transactions(
    type: Optional[str] = Query(None, description="income or expense"),
    is_active: Optional[bool] = Query(None, description="Filter by active flag when provided"),
    page: int = Query(1, ge=1),
    per_page: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
) -> RecurringTransactionPage:
    svc = RecurrenceService(db)
    result = svc.list_recurrences(
        user_id=current_user.id,
        type=type,
        is_active=is_active,
        page=page,
        per_page=per_page,
    )
    return RecurringTransactionPage(
        data=[RecurringTransactionOut.model_validate(row, from_attributes=True) for row in result.data],
        total=result.total,
        page=result.page,
        per_page=result.per_page,
        total_pages=result.total_pages,
    )


def create_recurring_transaction(
    payload: RecurringTransactionCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> models.RecurringTransaction:
    svc = RecurrenceService(db, clock=clock)
    return svc.create(payload.model_dump(), user_id=current_user.id)


def get_recurring_transaction(
    recurring_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
) -> models.RecurringTransaction:
    return RecurrenceService(db).get(current_user.id, recurring_id)


def preview_occurrences(
    recurring_id: int,
    start: date = Query(...),
    end: date = Query(...),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
) -> RecurringOccurrencesOut:
    items = RecurrenceService(db).preview(current_user.id, recurring_id, start, end)
    return RecurringOccurrencesOut(items=items, total_count=len(items))


def pause_recurring_transaction(
    recurring_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> models.RecurringTransaction:
    return RecurrenceService(db, clock=clock).pause(current_user.id, recurring_id)


def resume_recurring_transaction(
    recurring_id: int,
    payload: Optional[RecurringResumeRequest] = Body(None),
    on_conflict: Optional[str] = Query(None, description="update or create"),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    strategy = on_conflict if on_conflict is not None else (payload.on_conflict if payload else None)
    svc = RecurrenceService(db, clock=clock)
    try:
        result = svc.resume(current_user.id, recurring_id, on_conflict=strategy)
    except errors.ConflictError as exc:
        body = RecurringResumeConflictOut(
            detail=exc.detail,
            recurring_transaction=RecurringTransactionOut.model_validate(exc.recurrence, from_attributes=True),
            existing_transactions=[
                TransactionOut.model_validate(txn, from_attributes=True) for txn in exc.existing_transactions
            ],
        )
        return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(body))
    return RecurringTransactionOut.model_validate(result.recurrence, from_attributes=True)


def delete_recurring_transaction(
    recurring_id: int,
    payload: Optional[RecurringDeleteRequest] = Body(None),
    mode: Optional[str] = Query(None, description="all | future_and_current | future_only"),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    effective = mode if mode is not None else (payload.mode if payload else None)
    if effective is None:
        raise errors.ValidationError("mode is required")
    RecurrenceService(db, clock=clock).delete(current_user.id, recurring_id, effective)
    return Response(status_code=204)
