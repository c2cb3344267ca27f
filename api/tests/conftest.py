import os

# The app module builds its engine at import time.
os.environ["POSTGRES_URL"] = "sqlite://"
os.environ.setdefault("APP_ENV", "test")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ledgerbook.config import get_settings
from ledgerbook.db import get_db
from ledgerbook.main import app
from ledgerbook.models import audit, checkpoint, import_batch  # noqa: F401 (table registration)
from ledgerbook.models.account import Account
from ledgerbook.models.base import Base
from ledgerbook.models.budget import Budget
from ledgerbook.models.transaction import Transaction


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    TestingSession = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def settings(monkeypatch):
    """Live settings object; tests may monkeypatch its attributes."""
    s = get_settings()
    monkeypatch.setattr(s, "reconciliation_threshold_cents", 1)
    monkeypatch.setattr(s, "import_chunk_size", 500)
    monkeypatch.setattr(s, "max_checkpoints_per_account", 100)
    return s


@pytest.fixture
def budget(db):
    b = Budget(name="Household", currency="USD")
    db.add(b)
    db.commit()
    return b


@pytest.fixture
def make_account(db, budget):
    def _make(name="Checking", type="checking"):
        acc = Account(budget_id=budget.id, name=name, type=type)
        db.add(acc)
        db.commit()
        return acc

    return _make


@pytest.fixture
def account(make_account):
    return make_account()


@pytest.fixture
def add_tx(db):
    def _add(account, d, amount_cents, memo=None, **kwargs):
        t = Transaction(
            budget_id=account.budget_id,
            account_id=account.id,
            date=d,
            amount_cents=amount_cents,
            memo=memo,
            **kwargs,
        )
        db.add(t)
        db.flush()
        return t

    return _add


@pytest.fixture
def client(db, settings):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
