"""
pytest configuration – point the service at a throwaway database, initialise
tables before tests run, and share one admin token across the session.
"""
import os
import secrets

os.environ.setdefault("SENTINEL_DATABASE_URL", "sqlite:///./sentinel_test.db")
os.environ.setdefault("SENTINEL_LOG_FORMAT", "text")
os.environ.setdefault("SENTINEL_LOGIN_RATE_LIMIT", "100/minute")

import pytest  # noqa: E402
from eth_utils import to_checksum_address  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from sentinel.database import Base, engine  # noqa: E402
from sentinel import models  # noqa: E402,F401 – registers ORM mappings with Base.metadata
from sentinel.main import app  # noqa: E402


@pytest.fixture(autouse=True, scope="session")
def create_tables():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


# Session-scoped admin token: login happens ONCE per test run
_session_token: str | None = None


@pytest.fixture(scope="session")
def admin_token() -> str:
    global _session_token
    if _session_token is None:
        client = TestClient(app)
        resp = client.post("/auth/login", json={"username": "admin", "password": "changeme"})
        assert resp.status_code == 200, f"Login failed: {resp.text}"
        _session_token = resp.json()["access_token"]
    return _session_token


# ---------------------------------------------------------------------------
# Protocol helpers
# ---------------------------------------------------------------------------

class FakeClock:
    """Manually advanced unix clock."""

    def __init__(self, now: int = 1_700_000_000) -> None:
        self.now = now

    def __call__(self) -> float:
        return float(self.now)

    def advance(self, seconds: int) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def new_address():
    """Factory for fresh, checksummed 20-byte addresses."""
    return lambda: to_checksum_address("0x" + secrets.token_hex(20))


@pytest.fixture
def agent_key() -> str:
    return "0x" + secrets.token_hex(32)
