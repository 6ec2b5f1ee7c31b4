"""Category handlers. Categories are per user and typed income/expense."""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ledger import models
from ledger.core.database import get_db
from ledger.core.deps import get_current_user
from ledger.schemas import CategoryCreate


def list_categories(
    type: Optional[models.TxnType] = Query(None),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
) -> list[models.Category]:
    q = db.query(models.Category).filter(models.Category.user_id == current_user.id)
    if type is not None:
        q = q.filter(models.Category.type == type)
    return q.order_by(models.Category.type, models.Category.name).all()


def create_category(
    payload: CategoryCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
) -> models.Category:
    exists = (
        db.query(models.Category)
        .filter(
            models.Category.user_id == current_user.id,
            models.Category.type == payload.type,
            models.Category.name == payload.name,
        )
        .first()
    )
    if exists:
        raise HTTPException(status_code=409, detail="Category with same name already exists")
    category = models.Category(user_id=current_user.id, name=payload.name, type=payload.type)
    db.add(category)
    db.commit()
    db.refresh(category)
    return category
