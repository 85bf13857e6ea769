"""
tests/conftest.py -- Shared test fixtures for the job-board auth tests.

This module provides:
  - FakeClock / clock: a controllable UTC clock for expiry and lockout timing
  - store / config / service: unit-level fixtures over an in-memory SQLite DB
  - api_client: TestClient wired to an isolated store and the fake clock

Design: Named shared-memory SQLite URIs (not plain :memory:) are used for the
API client because TestClient runs sync route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread. The named URI format shares one in-memory instance across all
connections in the same process.

DEBUG and LOGIN_RATE_LIMIT must be set before any api/core import so
get_settings() auto-generates SECRET_KEY instead of raising, and so the login
limiter does not trip during multi-attempt lockout tests.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: set before any api/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.service import AuthConfig, AuthSessionService
from auth.store import UserStore

TEST_SECRET = "test-secret-0123456789abcdef0123456789abcdef"


class FakeClock:
    """Callable UTC clock that only moves when a test advances it."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = UserStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def config() -> AuthConfig:
    """Production TTLs and lockout thresholds with a cheap scrypt cost for speed."""
    return AuthConfig(
        secret_key=TEST_SECRET,
        access_token_ttl="15m",
        refresh_token_ttl="7d",
        max_login_failures=5,
        lock_duration="15m",
        password_hash_cost=1024,
    )


@pytest.fixture
def service(store: UserStore, config: AuthConfig, clock: FakeClock) -> AuthSessionService:
    return AuthSessionService.from_config(store, config, clock=clock)


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(user_store: UserStore, auth_service: AuthSessionService):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test objects into app.state so TestClient routes see an
    isolated DB and the fake clock rather than the configured database.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.auth_service = auth_service
        yield

    return test_lifespan


@pytest.fixture
def api_client(config: AuthConfig, clock: FakeClock) -> Generator[tuple[TestClient, FakeClock], None, None]:
    """Yield (client, clock) backed by a fresh shared-memory database.

    Function-scoped: lockout and rotation tests mutate user state, so every
    test starts from an empty user table.
    """
    db_url = f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    user_store = UserStore(db_url)
    auth_service = AuthSessionService.from_config(user_store, config, clock=clock)

    app.router.lifespan_context = _patch_lifespan(user_store, auth_service)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, clock

    user_store.close()
