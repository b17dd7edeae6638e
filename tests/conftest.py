"""
tests/conftest.py -- Shared test fixtures for the authorization service.

This module provides:
  - _make_test_store(): creates an isolated in-memory credential store
  - _patch_lifespan(): wires a test store into app.state, bypassing real startup
  - store: function-scoped seeded CredentialStore for unit tests
  - api_client: TestClient plus a super-admin JWT for API integration tests
  - make_user(): helper that creates a user with roles / direct permissions

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

The DEBUG env var must be set before any auth module import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator, Iterable
from contextlib import asynccontextmanager
from datetime import timedelta

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.lockout import LockoutPolicy
from auth.models import User
from auth.revocation import TokenRevocationRegistry
from auth.store import CredentialStore
from auth.tokens import create_access_token, hash_password

STRONG_PASSWORD = "Str0ng!Passw0rd"

# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_store(db_suffix: str) -> CredentialStore:
    """Create an isolated named shared-memory SQLite store with seed data.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   (and function-scoped stores) don't share state.
    """
    url = f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true"
    store = CredentialStore(db_url=url)
    store.seed_defaults()
    return store


def make_user(
    store: CredentialStore,
    email: str,
    password: str = STRONG_PASSWORD,
    roles: Iterable[str] = (),
    permissions: Iterable[str] = (),
    is_active: bool = True,
) -> int:
    """Create a user with the given role codes and direct permission codes. Returns the id."""
    role_ids = [store.get_role_by_code(code).id for code in roles]
    uid = store.create_user(
        User(email=email, hashed_password=hash_password(password), is_active=is_active),
        role_ids=role_ids,
    )
    if permissions:
        store.set_user_permissions(uid, permissions)
    return uid


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _patch_lifespan(store: CredentialStore):
    """Return an async context manager that replaces the real lifespan.

    Wires the pre-created test store into app.state so TestClient routes see
    an isolated test DB rather than the production database.

    The cleanup_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = store
        app.state.revocations = TokenRevocationRegistry(store.engine)
        app.state.lockout = LockoutPolicy(store, threshold=5, duration=timedelta(minutes=15))
        app.state.cleanup_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.cleanup_task.cancel()

    return test_lifespan


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def reset_rate_limits() -> None:
    """Clear slowapi counters so one test's logins never throttle the next."""
    limiter.reset()


@pytest.fixture
def store() -> Generator[CredentialStore, None, None]:
    """Function-scoped seeded store on a fresh in-memory database."""
    s = _make_test_store(uuid.uuid4().hex)
    yield s
    s.close()


@pytest.fixture
def revocations(store: CredentialStore) -> TokenRevocationRegistry:
    return TokenRevocationRegistry(store.engine)


@pytest.fixture
def lockout(store: CredentialStore) -> LockoutPolicy:
    return LockoutPolicy(store, threshold=5, duration=timedelta(minutes=15))


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, str, int], None, None]:
    """Yield (client, token, user_id) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers but use an isolated in-memory store.
    The user holds the super-admin role (every seeded permission) and the
    JWT is generated for use in Authorization headers.
    """
    store = _make_test_store(f"api_{uuid.uuid4().hex}")
    uid = make_user(store, "admin@example.com", roles=["super-admin"])
    token = create_access_token(user_id=uid, email="admin@example.com", expire_seconds=3600)

    app.router.lifespan_context = _patch_lifespan(store)

    # base_url host must pass TrustedHostMiddleware.
    with TestClient(app, base_url="http://localhost", raise_server_exceptions=True) as client:
        yield client, token, uid

    store.close()
