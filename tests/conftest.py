"""
tests/conftest.py -- Shared test fixtures for ClinicAuth.

This module provides:
  - FakeClock: a settable clock injected into the verifier and issuer
  - engine / user_store / refresh_store: isolated in-memory DB per test
  - accounts: the three default clinic accounts, seeded with cheap bcrypt
  - verifier / issuer: the auth core wired the same way api.main does it
  - api_client: TestClient over the real app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. Each fixture uses a unique name so tests never share rows.

DEBUG and BCRYPT_ROUNDS must be set before any api/core import so
get_settings() auto-generates JWT_SECRET and hashes stay fast.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: Set before any api/core import so get_settings() can auto-generate
# JWT_SECRET in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine

from api.limiter import limiter
from api.main import app, init_auth
from auth.lockout import LockoutPolicy
from auth.models import Account
from auth.seed import seed_default_users
from auth.sessions import SessionIssuer
from auth.store import RefreshTokenStore, UserStore, make_engine
from auth.tokens import ACCESS, REFRESH, TokenCodec
from auth.verifier import CredentialVerifier
from core.config import get_settings

TEST_ROUNDS = 4
TEST_SECRET = "test-secret-key-that-is-long-enough-0123456789"


class FakeClock:
    """Callable clock. Starts at real UTC now so store-written timestamps line up."""

    def __init__(self) -> None:
        self.now = datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def _memory_url(prefix: str) -> str:
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    eng = make_engine(_memory_url("test_auth"))
    yield eng
    eng.dispose()


@pytest.fixture
def user_store(engine: Engine) -> UserStore:
    return UserStore(engine=engine)


@pytest.fixture
def secret_key() -> str:
    return TEST_SECRET


@pytest.fixture
def refresh_store(engine: Engine, secret_key: str) -> RefreshTokenStore:
    return RefreshTokenStore(secret_key, engine=engine)


@pytest.fixture
def accounts(user_store: UserStore) -> dict[str, Account]:
    """Seed admin/doctor/staff and return them keyed by role name (lowercase)."""
    seed_default_users(user_store, rounds=TEST_ROUNDS)
    return {
        "admin": user_store.get_by_email("admin@clinic.com"),
        "doctor": user_store.get_by_email("doctor@clinic.com"),
        "staff": user_store.get_by_email("staff@clinic.com"),
    }


@pytest.fixture
def policy() -> LockoutPolicy:
    return LockoutPolicy(max_attempts=5, lockout_duration=timedelta(minutes=30))


@pytest.fixture
def verifier(user_store: UserStore, policy: LockoutPolicy, clock: FakeClock) -> CredentialVerifier:
    return CredentialVerifier(user_store, policy, bcrypt_rounds=TEST_ROUNDS, clock=clock)


@pytest.fixture
def access_codec() -> TokenCodec:
    return TokenCodec(TEST_SECRET, timedelta(minutes=15), ACCESS)


@pytest.fixture
def refresh_codec() -> TokenCodec:
    return TokenCodec(TEST_SECRET, timedelta(days=7), REFRESH)


@pytest.fixture
def issuer(
    verifier: CredentialVerifier,
    user_store: UserStore,
    refresh_store: RefreshTokenStore,
    access_codec: TokenCodec,
    refresh_codec: TokenCodec,
    clock: FakeClock,
) -> SessionIssuer:
    return SessionIssuer(
        verifier,
        user_store,
        refresh_store,
        access_codec,
        refresh_codec,
        secret_key=TEST_SECRET,
        clock=clock,
    )


# ---------------------------------------------------------------------------
# API fixture
# ---------------------------------------------------------------------------


def _patch_lifespan(engine: Engine):
    """Return an async context manager that replaces the real lifespan.

    Wires the auth graph onto app.state over the test engine instead of the
    configured DATABASE_URL, and seeds the default accounts.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        init_auth(app, get_settings(), engine)
        seed_default_users(app.state.user_store, rounds=TEST_ROUNDS)
        yield

    return test_lifespan


@pytest.fixture
def api_client() -> Generator[TestClient, None, None]:
    """Yield a TestClient over the real app with a fresh seeded database.

    Function-scoped: login attempts change lockout counters and refresh
    tokens are single-use, so tests must not share state. The login rate
    limiter is disabled; lockout tests make more than 10 attempts a minute.
    """
    eng = make_engine(_memory_url("test_api"))
    app.router.lifespan_context = _patch_lifespan(eng)
    limiter.enabled = False
    with TestClient(app, raise_server_exceptions=True) as client:
        yield client
    limiter.enabled = True
    eng.dispose()
