"""
Shared fixtures.

Every test gets a fresh in-memory SQLite database. API tests talk to the
real FastAPI app through TestClient with the session dependency pointed at
that database and rate limiting switched off.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

from dataclasses import dataclass
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlmodel import SQLModel, Session

from wallet_tracker import catalog
from wallet_tracker.auth import create_access_token
from wallet_tracker.database import build_engine, get_session
from wallet_tracker.main import app
from wallet_tracker.models import Account, Category, CategoryType
from wallet_tracker.rate_limit import UnlimitedRateLimiter

from tests.helpers import OWNER


@pytest.fixture
def engine():
    engine = build_engine("sqlite://")
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def client(engine):
    def override_get_session():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    previous_limiter = app.state.rate_limiter
    app.state.rate_limiter = UnlimitedRateLimiter()
    yield TestClient(app)
    app.dependency_overrides.clear()
    app.state.rate_limiter = previous_limiter


@pytest.fixture
def auth_headers():
    def make(user_id: str = OWNER) -> dict:
        return {"Authorization": f"Bearer {create_access_token({'sub': user_id})}"}
    return make


@dataclass
class Wallets:
    x: Account
    y: Account
    food: Category
    salary: Category
    transfer: Category


@pytest.fixture
def wallets(session) -> Wallets:
    """Alice's ledger: X opens at 1000, Y at 0, plus one category per type."""
    x = catalog.create_account(session, "Wallet X", Decimal("1000"), OWNER)
    y = catalog.create_account(session, "Wallet Y", Decimal("0"), OWNER)
    food = catalog.create_category(session, "Food", "EXPENSE", OWNER)
    salary = catalog.create_category(session, "Salary", "income", OWNER)
    transfer = catalog.create_category(session, "Transfer", CategoryType.TRANSFER, OWNER)
    return Wallets(x=x, y=y, food=food, salary=salary, transfer=transfer)

