"""
tests/conftest.py -- Shared test fixtures for Canvas Auth.

This module provides:
  - make_store(): an isolated UserStore on a named shared-memory SQLite DB
  - store / hasher / tokens / sessions: unit-level building blocks
  - api_client: TestClient over the real app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because store calls run on worker threads and the QueuePool hands out more
than one connection. Plain :memory: DBs are per-connection and would present
a blank schema to each of them. The named URI format
(file:name?mode=memory&cache=shared&uri=true) shares one in-memory instance
across all connections in the same process.

The environment must be set before any api/ import so get_settings()
auto-generates signing secrets (DEBUG) and bcrypt stays fast in tests.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: set before any core/api import so the cached Settings see them.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("SIGNUP_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app, build_services, release_services
from auth.passwords import PasswordHasher
from auth.sessions import SessionService
from auth.store import UserStore
from auth.tokens import TokenService
from core.config import TokenConfig, get_settings

ACCESS_SECRET = "a" * 32 + "-access"
REFRESH_SECRET = "r" * 32 + "-refresh"


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_store(pool_size: int = 5, pool_timeout: float = 2.0) -> UserStore:
    """Create an isolated named shared-memory SQLite store.

    A fresh uuid per call keeps tests from seeing each other's accounts.
    """
    url = f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    return UserStore(url, pool_size=pool_size, pool_timeout=pool_timeout, statement_timeout=2.0)


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = make_store()
    yield s
    s.close()


@pytest.fixture
def hasher() -> Generator[PasswordHasher, None, None]:
    h = PasswordHasher(rounds=4, workers=2)
    yield h
    h.close()


@pytest.fixture
def token_config() -> TokenConfig:
    return TokenConfig(access_secret=ACCESS_SECRET, refresh_secret=REFRESH_SECRET)


@pytest.fixture
def tokens(token_config: TokenConfig) -> TokenService:
    return TokenService(token_config)


@pytest.fixture
def sessions(store: UserStore, hasher: PasswordHasher, tokens: TokenService) -> SessionService:
    return SessionService(store, hasher, tokens)


# ---------------------------------------------------------------------------
# Integration fixture -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


def _patch_lifespan(store: UserStore):
    """Return a lifespan that wires the real services around a test store."""

    @asynccontextmanager
    async def test_lifespan(app):
        build_services(app, get_settings(), store)
        yield
        release_services(app)

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[TestClient, None, None]:
    """Yield a TestClient over the real app backed by an isolated store.

    Tests reach the live services through client.app.state (user_store,
    tokens, sessions) when they need to set up state directly.
    """
    test_store = make_store()
    app.router.lifespan_context = _patch_lifespan(test_store)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def unique_email(prefix: str = "user") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:10]}@example.com"


def signup_body(email: str, password: str = "secret1") -> dict:
    return {"email": email, "password": password, "firstName": "Ada", "lastName": "Lovelace"}
