from __future__ import annotations

import os
import tempfile
from datetime import datetime
from typing import Generator, Any

import pytest
from sqlalchemy.orm import sessionmaker

from ledger.core.database import Base, get_db, make_engine
from ledger.core.deps import get_clock
from ledger.main import app
from ledger import models

# "today" for every test: mid-May, so April is the previous period and June the next
FIXED_NOW = datetime(2024, 5, 15, 9, 30)


@pytest.fixture(scope="session")
def test_db_url() -> Generator[str, Any, Any]:
    # temp file SQLite so the developer's database is never touched
    fd, path = tempfile.mkstemp(prefix="ledger_test_", suffix=".sqlite3")
    os.close(fd)
    url = f"sqlite:///{path}"
    yield url
    for leftover in (path, f"{path}-wal", f"{path}-shm"):
        try:
            os.remove(leftover)
        except OSError:
            pass


@pytest.fixture(scope="session")
def engine(test_db_url: str):
    eng = make_engine(test_db_url)
    Base.metadata.create_all(eng)
    return eng


@pytest.fixture(scope="function")
def db_session(engine) -> Generator[Any, Any, Any]:
    TestingSessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = TestingSessionLocal()
    # seed: demo user (first user = current user) with one income and one expense category
    user = models.User(email="demo@example.com", display_name="Demo", is_active=True)
    session.add(user)
    session.flush()
    session.add(models.Category(user_id=user.id, name="Salary", type=models.TxnType.INCOME))
    session.add(models.Category(user_id=user.id, name="Housing", type=models.TxnType.EXPENSE))
    session.commit()

    try:
        yield session
    finally:
        session.close()
        with engine.begin() as conn:
            if engine.dialect.name == "sqlite":
                conn.exec_driver_sql("PRAGMA foreign_keys=OFF")
            for tbl in reversed(Base.metadata.sorted_tables):
                conn.execute(tbl.delete())
            if engine.dialect.name == "sqlite":
                conn.exec_driver_sql("PRAGMA foreign_keys=ON")


@pytest.fixture()
def clock():
    return lambda: FIXED_NOW


@pytest.fixture(autouse=True)
def override_dependency(db_session, clock):
    # FastAPI DI override
    def _get_db_override():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = _get_db_override
    app.dependency_overrides[get_clock] = lambda: clock
    yield
    app.dependency_overrides.clear()


@pytest.fixture()
def client(db_session):
    from fastapi.testclient import TestClient
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def demo_user(db_session) -> models.User:
    return db_session.query(models.User).filter_by(email="demo@example.com").one()


@pytest.fixture()
def expense_category(db_session, demo_user) -> models.Category:
    return db_session.query(models.Category).filter_by(user_id=demo_user.id, type=models.TxnType.EXPENSE).one()


@pytest.fixture()
def income_category(db_session, demo_user) -> models.Category:
    return db_session.query(models.Category).filter_by(user_id=demo_user.id, type=models.TxnType.INCOME).one()
