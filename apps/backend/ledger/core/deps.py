from __future__ import annotations

from datetime import datetime
from typing import Callable

from fastapi import Depends
from sqlalchemy.orm import Session

from ledger.core.database import get_db
from ledger import models


def get_current_user(db: Session = Depends(get_db)) -> models.User:
    """Very lightweight current user resolver.

    Authentication is handled outside this service; until a session layer is
    mounted this returns the first user (creating a demo one if none exists).
    Tests override this dependency to act as different owners.
    """
    user = db.query(models.User).order_by(models.User.id).first()
    if not user:
        user = models.User(email="demo@example.com", display_name="Demo", is_active=True)
        db.add(user)
        db.commit()
        db.refresh(user)
    return user


def get_clock() -> Callable[[], datetime]:
    """Clock used for "today" and pause timestamps; tests pin it."""
    return models.now_local_naive
