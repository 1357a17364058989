"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET is always set for test runs.
# This must happen before any import of groupguard.api.deps which validates
# the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from groupguard.database.models import Base  # noqa: E402


@pytest.fixture
def db_engine() -> Engine:
    """In-memory SQLite engine with all GroupGuard tables.

    Uses StaticPool so all threads share the same in-memory database
    (``run_db`` and FastAPI's threadpool open sessions off the main thread).
    """
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
    """Provide a session that rolls back after each test."""
    with Session(db_engine) as session:
        yield session
        session.rollback()


def make_admin_token(sub: str = "99999", username: str = "FixtureAdmin", is_admin: bool = True) -> str:
    """Create a JWT.  Usable as both a fixture helper and a factory function."""
    import jwt

    from groupguard.api.deps import JWT_ALGORITHM, JWT_SECRET

    return jwt.encode(
        {"sub": sub, "username": username, "is_admin": is_admin},
        JWT_SECRET,
        algorithm=JWT_ALGORITHM,
    )


@pytest.fixture
def admin_token():
    return make_admin_token()


@pytest.fixture
def runtime(db_engine):
    """A runtime with no directory and no alerts, backed by SQLite."""
    from groupguard.config import config_from_dict
    from groupguard.runtime import GroupGuardRuntime

    rt = GroupGuardRuntime(config_from_dict({}), db_engine)
    rt.store.reload()
    return rt


@pytest.fixture
def client(runtime):
    """FastAPI TestClient wired to the ``runtime`` fixture."""
    from fastapi.testclient import TestClient

    from groupguard.api.main import app

    app.state.runtime = runtime
    yield TestClient(app, raise_server_exceptions=False)
    del app.state.runtime
