"""Pytest configuration and fixtures for SubTrack tests."""

from datetime import date, datetime, timedelta
from typing import Generator

import pytest
from fastapi.testclient import TestClient

import config
from api import create_app
from models import Subscription
from store import Store

TEST_EMAIL = "user@example.com"
TEST_PASSWORD = "Test123!@#"


@pytest.fixture(autouse=True)
def fast_bcrypt(monkeypatch):
    """Keep password hashing cheap in tests."""
    monkeypatch.setattr(config, "BCRYPT_ROUNDS", 4)


@pytest.fixture
def store(tmp_path) -> Store:
    """A store backed by a fresh temporary data directory."""
    return Store(tmp_path / "data")


@pytest.fixture
def app(store):
    return create_app(store=store)


@pytest.fixture
def client(app) -> Generator[TestClient, None, None]:
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def tokens(client) -> dict:
    """Register and log in the test user; returns the login response body."""
    client.post("/api/auth/register", json={"email": TEST_EMAIL, "password": TEST_PASSWORD})
    response = client.post("/api/auth/login", json={"email": TEST_EMAIL, "password": TEST_PASSWORD})
    assert response.status_code == 200
    return response.json()


@pytest.fixture
def auth_headers(tokens) -> dict:
    return {"Authorization": f"Bearer {tokens['accessToken']}"}


@pytest.fixture
def test_user(store, tokens) -> dict:
    return store.find_user_by_email(TEST_EMAIL)


@pytest.fixture
def now() -> datetime:
    return datetime(2024, 6, 1, 10, 0)


def make_sub(name="Netflix", cost=10.0, frequency="monthly", due=None, category="Entertainment",
             status="active", **extra) -> Subscription:
    """Build a Subscription without going through the store."""
    return Subscription(
        id=extra.pop("id", name.lower().replace(" ", "-")),
        name=name,
        cost=cost,
        billing_frequency=frequency,
        next_payment_date=due or date(2024, 6, 15),
        category=category,
        status=status,
        created_at=datetime(2024, 1, 1),
        **extra,
    )


def sub_payload(name="Test", cost=10, days_ahead=10, category="Other", **extra) -> dict:
    payload = {
        "name": name,
        "cost": cost,
        "billingFrequency": "monthly",
        "nextPaymentDate": (date.today() + timedelta(days=days_ahead)).isoformat(),
        "category": category,
    }
    payload.update(extra)
    return payload
