"""
Pytest configuration and shared fixtures.

Test environment variables are set here, before any marketchat import, so
settings are built from them rather than from a developer's .env file.
"""

import itertools
import os
import tempfile

import pytest

os.environ.setdefault(
    "DATABASE_URL", "sqlite:///" + os.path.join(tempfile.gettempdir(), "marketchat_test.db")
)
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("JWT_SECRET", "test-secret")

# Clear settings cache before any app imports to ensure test env vars are used
from marketchat.config import get_settings  # noqa: E402
get_settings.cache_clear()

from fastapi.testclient import TestClient  # noqa: E402

from marketchat import models  # noqa: E402,F401
from marketchat.directory import AccountDirectory, ListingDirectory  # noqa: E402
from marketchat.main import app  # noqa: E402
from marketchat.security import create_access_token  # noqa: E402
from marketchat.storage import Base, SessionLocal, engine  # noqa: E402

OWNER_PHONE = "09120000002"
BUYER_PHONE = "09110000001"
SECOND_BUYER_PHONE = "09110000003"


class StepClock:
    """Deterministic clock: one second later on every call."""

    def __init__(self):
        self._ticks = itertools.count()

    def __call__(self) -> str:
        seconds = next(self._ticks)
        return f"2025-01-15T10:{seconds // 60:02d}:{seconds % 60:02d}.000000Z"


def auth_headers(user_id: str, phone: str) -> dict:
    """Cookie header carrying a valid token for the given account."""
    return {"Cookie": f"auth_token={create_access_token(user_id, phone)}"}


@pytest.fixture(scope="function")
def db():
    """Session over freshly created tables; tables dropped afterwards."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def clock():
    return StepClock()


@pytest.fixture
def marketplace(db):
    """Owner, one buyer with an account, and listing L1 owned by the owner."""
    accounts = AccountDirectory(db)
    owner = accounts.add(OWNER_PHONE, name="فروشنده", account_id="u-owner")
    buyer = accounts.add(BUYER_PHONE, name="علی", account_id="u-buyer")
    second_buyer = accounts.add(SECOND_BUYER_PHONE, name="", account_id="u-buyer2")
    listing = ListingDirectory(db).add(owner.id, owner.phone, "دوچرخه", listing_id="L1")
    return {"owner": owner, "buyer": buyer, "second_buyer": second_buyer, "listing": listing}


@pytest.fixture
def client(marketplace):
    """Test client over a seeded marketplace."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def owner_headers(marketplace):
    return auth_headers("u-owner", OWNER_PHONE)


@pytest.fixture
def buyer_headers(marketplace):
    return auth_headers("u-buyer", BUYER_PHONE)


@pytest.fixture
def second_buyer_headers(marketplace):
    return auth_headers("u-buyer2", SECOND_BUYER_PHONE)
