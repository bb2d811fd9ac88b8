"""
tests/conftest.py -- Shared test fixtures for appy.

This module provides:
  - make_settings(): Settings with a fixed test secret and per-test overrides
  - make_store(): isolated named shared-memory SQLite AuthStore, roles seeded
  - make_user(): insert a user with hashed password / PIN and a role
  - api: TestClient harness on the real app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because blocking store calls run in worker threads (asyncio.to_thread and
FastAPI's thread pool). Plain :memory: DBs are per-connection and would
present a blank schema to each worker thread.

DEBUG and LOGIN_RATE_LIMIT must be set before any api/auth/core import so
get_settings() auto-generates SECRET_KEY and the transport-level rate limit
does not interfere with tests that log in many times.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from unittest.mock import MagicMock

# CRITICAL: Set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.limiter import configure_limits
from api.main import app
from auth.models import User
from auth.store import AuthStore
from auth.tokens import hash_password
from core.config import Settings
from core.constants import AuthStrategy, UserRole

TEST_SECRET = "test-secret-key-that-is-long-enough-0123456789"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def make_settings(**overrides) -> Settings:
    values = {"debug": True, "secret_key": TEST_SECRET, "smtp_host": ""}
    values.update(overrides)
    return Settings(**values)


def make_store() -> AuthStore:
    """Create an isolated named shared-memory store with the built-in roles."""
    store = AuthStore(db_url=f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")
    store.ensure_roles([role.value for role in UserRole])
    return store


def make_user(
    store: AuthStore,
    email: str = "user@example.com",
    password: str = "correct-horse",
    pin: str | None = "1234",
    role: str = UserRole.USER.value,
    **fields,
) -> User:
    role_obj = store.get_role_by_name(role)
    user = User(
        email=email,
        password=hash_password(password),
        pin=hash_password(pin) if pin else None,
        role_id=role_obj.id if role_obj else None,
        first_name="Test",
        last_name="User",
        **fields,
    )
    user_id = store.create_user(user)
    return store.get_by_id(user_id)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def store() -> Generator[AuthStore, None, None]:
    s = make_store()
    yield s
    s.close()


@dataclass
class ApiHarness:
    client: TestClient
    store: AuthStore
    mailer: MagicMock

    def use_strategy(self, strategy: AuthStrategy, **overrides) -> Settings:
        """Swap the settings the app resolves services from."""
        settings = make_settings(auth_strategy=strategy, **overrides)
        self.client.app.state.settings = settings
        return settings

    @property
    def settings(self) -> Settings:
        return self.client.app.state.settings


def _patch_lifespan(store: AuthStore, mailer: MagicMock):
    """Replace the real lifespan so routes see the test store and a mock mailer."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.settings = make_settings()
        configure_limits(app.state.settings)
        app.state.store = store
        app.state.mailer = mailer
        yield

    return test_lifespan


@pytest.fixture
def api() -> Generator[ApiHarness, None, None]:
    """Yield an ApiHarness around the real app with an isolated store.

    The default strategy is jwt-with-session-and-refresh-token; tests call
    api.use_strategy() to switch.
    """
    store = make_store()
    mailer = MagicMock()
    app.router.lifespan_context = _patch_lifespan(store, mailer)
    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiHarness(client=client, store=store, mailer=mailer)
    store.close()
