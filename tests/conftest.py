"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET and feed token are always set for test runs.
# This must happen before any import of seedkeeper.api.deps which validates
# the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)
os.environ.setdefault("PRESENCE_FEED_TOKEN", "test-feed-token")

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine  # noqa: E402

# ---------------------------------------------------------------------------
# Make JSONB columns work in SQLite for testing.
# SQLite doesn't support JSONB natively, but SQLAlchemy's JSON type works.
# We register a custom type compiler so SQLite renders JSONB as TEXT.
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from seedkeeper.config import SeedkeeperConfig, parse_config  # noqa: E402
from seedkeeper.database.models import Base  # noqa: E402
from seedkeeper.services.whitelist_service import LedgerWhitelistService  # noqa: E402

_jsonb_sqlite_registered = False


def _register_jsonb_sqlite_compat():
    """Register SQLite compilation for PG JSONB type (idempotent)."""
    global _jsonb_sqlite_registered
    if _jsonb_sqlite_registered:
        return
    from sqlalchemy.ext.compiler import compiles

    @compiles(PG_JSONB, "sqlite")
    def _compile_jsonb_as_text(type_, compiler, **kw):
        return "TEXT"

    _jsonb_sqlite_registered = True


_register_jsonb_sqlite_compat()


FEED_TOKEN = os.environ["PRESENCE_FEED_TOKEN"]

TEST_CONFIG_RAW = {
    "community_name": "Test Community",
    "bot_prefix": "!",
    "guild_id": 1,
    "dashboard_port": 8000,
    "admin_role_id": 42,
    "servers": [
        {"id": "s1", "name": "Server #1"},
        {"id": "s2", "name": "Server #2"},
        {"id": "s3", "name": "Server #3"},
    ],
    "whitelist": {"backend": "ledger"},
}


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all Seedkeeper tables.

    JSONB columns are transparently mapped to TEXT for SQLite compatibility.
    Uses StaticPool so all threads share the same in-memory database
    (the API's sync routes run on a worker thread).
    """
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    """Provide a session for inspecting rows after a service call."""
    with Session(db_engine) as session:
        yield session
        session.rollback()


@pytest.fixture
def cfg() -> SeedkeeperConfig:
    """Three known servers: s1, s2, s3."""
    return parse_config(TEST_CONFIG_RAW)


@pytest.fixture
def whitelist() -> LedgerWhitelistService:
    return LedgerWhitelistService()


class RecordingNotifier:
    """Keeps every broadcast and player message for assertions."""

    def __init__(self) -> None:
        self.broadcasts: list[tuple[tuple[str, ...], str]] = []
        self.messages: list[tuple[str, str, str]] = []

    def broadcast(self, server_ids, message: str) -> None:
        self.broadcasts.append((tuple(server_ids), message))

    def message_player(self, server_id: str, steam_id: str, message: str) -> None:
        self.messages.append((server_id, steam_id, message))


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def admin_token():
    """Generate a valid admin JWT for use in API integration tests."""
    return make_admin_token()


def make_admin_token(sub: str = "99999", username: str = "FixtureAdmin") -> str:
    """Create an admin JWT.  Usable as both a fixture and a factory function."""
    import jwt

    from seedkeeper.api.deps import JWT_ALGORITHM, JWT_SECRET

    return jwt.encode(
        {"sub": sub, "username": username, "is_admin": True},
        JWT_SECRET,
        algorithm=JWT_ALGORITHM,
    )


@pytest.fixture
def client(db_engine, cfg, whitelist, notifier):
    """FastAPI TestClient wired to the in-memory engine and test config."""
    from fastapi.testclient import TestClient

    from seedkeeper.api.main import app
    from seedkeeper.api.routes import presence as presence_routes
    from seedkeeper.api.routes import seeding as seeding_routes

    # Override the exact callables the routers were built with
    for module in (seeding_routes, presence_routes):
        app.dependency_overrides[module.get_engine] = lambda: db_engine
        app.dependency_overrides[module.get_whitelist_service] = lambda: whitelist
        app.dependency_overrides[module.get_notifier] = lambda: notifier
    app.dependency_overrides[seeding_routes.get_config] = lambda: cfg

    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()
