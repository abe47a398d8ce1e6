"""
tests/conftest.py -- Shared test fixtures for Trades Auth.

This module provides:
  - unit fixtures: hasher, issuer, stores, a controllable clock, and the
    services wired together exactly as build_auth_service() does
  - make_user: helper that inserts a user with a known password
  - api_client: TestClient over the real FastAPI app with a patched lifespan

Design: the API fixture uses a named shared-memory SQLite URI (not plain
:memory:) because TestClient runs sync route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread.

DEBUG and LOGIN_RATE_LIMIT must be set before any api/auth/core import so
get_settings() auto-generates the signing secrets and the login limiter does
not trip across a test module.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

# CRITICAL: set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine

from api.main import app
from auth.federation import IdentityFederation
from auth.guard import AuthGuard
from auth.models import AccountStatus, User, UserType
from auth.passwords import PasswordHasher, PasswordPolicy
from auth.service import AuthService
from auth.sessions import SessionManager
from auth.store import SessionStore, UserStore, create_store_engine
from auth.tokens import TokenIssuer

ACCESS_SECRET = "a" * 24 + "-access-secret-for-tests"
REFRESH_SECRET = "r" * 24 + "-refresh-secret-for-tests"
DEFAULT_PASSWORD = "Secr3t!23"

# bcrypt's minimum cost keeps the suite fast; production uses 12.
TEST_ROUNDS = 4


class FakeClock:
    """Callable clock whose time only moves when a test advances it."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def hasher() -> PasswordHasher:
    return PasswordHasher(PasswordPolicy(), rounds=TEST_ROUNDS)


@pytest.fixture
def issuer() -> TokenIssuer:
    return TokenIssuer(access_secret=ACCESS_SECRET, refresh_secret=REFRESH_SECRET)


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    """One private in-memory database shared by both stores of a test."""
    eng = create_store_engine("sqlite://")
    yield eng
    eng.dispose()


@pytest.fixture
def user_store(engine: Engine) -> UserStore:
    return UserStore(engine=engine)


@pytest.fixture
def session_store(engine: Engine) -> SessionStore:
    return SessionStore(engine=engine)


@pytest.fixture
def make_user(user_store: UserStore, hasher: PasswordHasher):
    """Return a factory that inserts a user and returns the stored record."""

    def _make(
        email: str = "a@x.com",
        password: str = DEFAULT_PASSWORD,
        user_type: str = UserType.customer.value,
        account_status: str = AccountStatus.active.value,
        email_verified: bool = False,
    ) -> User:
        user_id = user_store.create_user(
            User(
                email=email,
                password_hash=hasher.hash(password),
                user_type=user_type,
                account_status=account_status,
                first_name="Test",
                last_name="User",
                email_verified_at=datetime.now(timezone.utc) if email_verified else None,
            )
        )
        return user_store.find_by_id(user_id)

    return _make


@pytest.fixture
def manager(session_store: SessionStore, user_store: UserStore, issuer: TokenIssuer, clock: FakeClock) -> SessionManager:
    return SessionManager(session_store, user_store, issuer, clock=clock)


@pytest.fixture
def federation(user_store: UserStore, hasher: PasswordHasher) -> IdentityFederation:
    return IdentityFederation(user_store, hasher)


@pytest.fixture
def guard(issuer: TokenIssuer, user_store: UserStore) -> AuthGuard:
    return AuthGuard(issuer, user_store)


@pytest.fixture
def service(
    user_store: UserStore,
    manager: SessionManager,
    issuer: TokenIssuer,
    hasher: PasswordHasher,
    federation: IdentityFederation,
) -> AuthService:
    return AuthService(users=user_store, sessions=manager, issuer=issuer, hasher=hasher, federation=federation)


# ---------------------------------------------------------------------------
# API fixture
# ---------------------------------------------------------------------------


def _patch_lifespan(engine):
    """Return a lifespan that wires test stores and services into app.state.

    The cleanup task is a long-sleeping coroutine so shutdown has a real
    asyncio.Task to cancel. The OAuth registry is a MagicMock so no provider
    metadata is ever fetched.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        users = UserStore(engine=engine)
        issuer = TokenIssuer(access_secret=ACCESS_SECRET, refresh_secret=REFRESH_SECRET)
        hasher = PasswordHasher(PasswordPolicy(), rounds=TEST_ROUNDS)
        sessions = SessionManager(SessionStore(engine=engine), users, issuer)
        app.state.user_store = users
        app.state.auth_service = AuthService(
            users=users,
            sessions=sessions,
            issuer=issuer,
            hasher=hasher,
            federation=IdentityFederation(users, hasher),
        )
        app.state.guard = AuthGuard(issuer, users)
        app.state.oauth = MagicMock()
        app.state.cleanup_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.cleanup_task.cancel()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[TestClient, None, None]:
    """Yield a TestClient over the real app backed by an isolated in-memory DB.

    Module-scoped for speed: each test module gets one database, so tests
    use distinct email addresses.
    """
    engine = create_store_engine("sqlite:///file:test_auth_api?mode=memory&cache=shared&uri=true")
    app.router.lifespan_context = _patch_lifespan(engine)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client

    engine.dispose()
