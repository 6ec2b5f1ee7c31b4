from __future__ import annotations

from sqlalchemy.orm import Session

from .core.database import session_scope
from .models import Category, TxnType, User

DEFAULT_CATEGORIES = {
    TxnType.INCOME: ("Salary", "Other income"),
    TxnType.EXPENSE: ("Housing", "Groceries", "Utilities", "Subscriptions", "Other expenses"),
}


def seed_user_categories(db: Session, user: User) -> list[Category]:
    """Create the default category set for ``user``; idempotent by name."""
    created: list[Category] = []
    for txn_type, names in DEFAULT_CATEGORIES.items():
        for name in names:
            exists = db.query(Category).filter_by(user_id=user.id, type=txn_type, name=name).first()
            if exists:
                continue
            category = Category(user_id=user.id, type=txn_type, name=name)
            db.add(category)
            created.append(category)
    db.flush()
    return created


def seed() -> None:
    with session_scope() as db:
        # demo user
        user = db.query(User).filter_by(email="demo@example.com").first()
        if not user:
            user = User(email="demo@example.com", display_name="Demo", is_active=True)
            db.add(user)
            db.flush()
        seed_user_categories(db, user)

        # second household member
        member = db.query(User).filter_by(email="member1@example.com").first()
        if not member:
            member = User(email="member1@example.com", display_name="Member 1", is_active=True)
            db.add(member)
            db.flush()
        seed_user_categories(db, member)


if __name__ == "__main__":
    seed()
