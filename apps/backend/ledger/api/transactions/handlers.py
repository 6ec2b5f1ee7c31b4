"""Transaction handlers: manual entry, edits and listing.

Editing a generated transaction never clears ``recurring_id``; that link is
what the recurrence lifecycle uses to find its occurrences.
"""

from __future__ import annotations

import math
from datetime import date
from typing import Optional

from fastapi import Depends, HTTPException, Query, Response
from sqlalchemy.orm import Session, selectinload

from ledger import models
from ledger.core.config import settings
from ledger.core.database import get_db
from ledger.core.deps import get_current_user
from ledger.schemas import TransactionCreate, TransactionOut, TransactionPage, TransactionUpdate


def _owned_category(db: Session, user_id: int, category_id: int, txn_type: models.TxnType) -> models.Category:
    category = (
        db.query(models.Category)
        .filter(models.Category.id == category_id, models.Category.user_id == user_id)
        .first()
    )
    if not category:
        raise HTTPException(status_code=400, detail="Category not found")
    if category.type != txn_type:
        raise HTTPException(status_code=400, detail="Category type does not match transaction type")
    return category


def _get_owned_transaction(db: Session, user_id: int, txn_id: int) -> models.Transaction:
    txn = (
        db.query(models.Transaction)
        .filter(models.Transaction.id == txn_id, models.Transaction.user_id == user_id)
        .first()
    )
    if not txn:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return txn


def list_transactions(
    type: Optional[models.TxnType] = Query(None),
    category_id: Optional[int] = Query(None),
    recurring_id: Optional[int] = Query(None),
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    page: int = Query(1, ge=1),
    per_page: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
) -> TransactionPage:
    q = db.query(models.Transaction).filter(models.Transaction.user_id == current_user.id)
    if type is not None:
        q = q.filter(models.Transaction.type == type)
    if category_id is not None:
        q = q.filter(models.Transaction.category_id == category_id)
    if recurring_id is not None:
        q = q.filter(models.Transaction.recurring_id == recurring_id)
    if start is not None:
        q = q.filter(models.Transaction.date >= start)
    if end is not None:
        q = q.filter(models.Transaction.date <= end)

    total = q.count()
    rows = (
        q.options(selectinload(models.Transaction.category))
        .order_by(models.Transaction.date.desc(), models.Transaction.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return TransactionPage(
        data=[TransactionOut.model_validate(row, from_attributes=True) for row in rows],
        total=total,
        page=page,
        per_page=per_page,
        total_pages=math.ceil(total / per_page) if per_page else 0,
    )


def create_transaction(
    payload: TransactionCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
) -> models.Transaction:
    _owned_category(db, current_user.id, payload.category_id, payload.type)
    txn = models.Transaction(
        user_id=current_user.id,
        category_id=payload.category_id,
        type=payload.type,
        amount=payload.amount,
        description=(payload.description or "").strip() or None,
        date=payload.date,
    )
    db.add(txn)
    db.commit()
    db.refresh(txn)
    return txn


def update_transaction(
    txn_id: int,
    payload: TransactionUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
) -> models.Transaction:
    txn = _get_owned_transaction(db, current_user.id, txn_id)
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        return txn
    if any(changes.get(key) is None for key in ("category_id", "type", "amount", "date") if key in changes):
        raise HTTPException(status_code=400, detail="category_id, type, amount and date cannot be null")
    if "category_id" in changes or "type" in changes:
        _owned_category(
            db,
            current_user.id,
            changes.get("category_id", txn.category_id),
            changes.get("type", txn.type),
        )
    for key, value in changes.items():
        setattr(txn, key, value)
    db.commit()
    db.refresh(txn)
    return txn


def delete_transaction(
    txn_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    txn = _get_owned_transaction(db, current_user.id, txn_id)
    db.delete(txn)
    db.commit()
    return Response(status_code=204)
