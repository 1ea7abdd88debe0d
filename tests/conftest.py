"""
tests/conftest.py -- Shared test fixtures for AccessDesk integration tests.

This module provides:
  - stores: isolated in-memory database with seeded groups and an admin user
  - client: TestClient running the real app against those stores (anonymous)
  - admin_client: the same client, signed in as the seeded admin
  - make_user: factory that inserts users directly through the store
  - login_as: returns a second, independent TestClient signed in as someone else

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process. Every
test gets its own name, so no state leaks between tests.

Environment variables must be set before any api/auth/core import so
get_settings() sees them: DEBUG generates SECRET_KEY, BCRYPT_ROUNDS keeps
hashing fast, and the rate limit and host list are opened up for TestClient.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager
from types import SimpleNamespace

# CRITICAL: set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ["ALLOWED_HOSTS"] = '["*"]'

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from audit.store import ActivityLog
from auth.models import ADMIN_GROUP_ID, User
from auth.passwords import hash_password
from auth.recovery import PasswordResetStore
from auth.sessions import SessionStore
from auth.store import UserStore

ADMIN_USERNAME = "testadmin"
ADMIN_PASSWORD = "adminpass123"
USER_PASSWORD = "userpass123"
MARKETING_GROUP_ID = 2

# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_stores() -> SimpleNamespace:
    """Create a seeded, isolated database and every store the app uses."""
    url = f"sqlite:///file:test_accessdesk_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    user_store = UserStore(db_url=url)
    user_store.seed_defaults()
    admin_id = user_store.create_user(
        User(
            username=ADMIN_USERNAME,
            email="testadmin@example.com",
            hashed_password=hash_password(ADMIN_PASSWORD),
            first_name="Test",
            last_name="Admin",
            group_id=ADMIN_GROUP_ID,
        )
    )
    return SimpleNamespace(
        user_store=user_store,
        session_store=SessionStore(user_store.engine),
        reset_store=PasswordResetStore(user_store.engine),
        activity_log=ActivityLog(user_store.engine),
        admin_id=admin_id,
    )


def _patch_lifespan(stores: SimpleNamespace):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state so TestClient routes see
    isolated test DBs rather than the production database.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = stores.user_store
        app.state.session_store = stores.session_store
        app.state.reset_store = stores.reset_store
        app.state.activity_log = stores.activity_log
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def stores() -> Generator[SimpleNamespace, None, None]:
    test_stores = _make_test_stores()
    yield test_stores
    test_stores.user_store.close()


@pytest.fixture
def client(stores: SimpleNamespace) -> Generator[TestClient, None, None]:
    """Anonymous TestClient over the real app with a patched lifespan."""
    limiter.reset()
    app.router.lifespan_context = _patch_lifespan(stores)
    with TestClient(app, raise_server_exceptions=True) as test_client:
        yield test_client


@pytest.fixture
def admin_client(client: TestClient) -> TestClient:
    """The client fixture, signed in as the seeded admin."""
    resp = client.post("/api/v1/login", json={"username": ADMIN_USERNAME, "password": ADMIN_PASSWORD})
    assert resp.status_code == 200, resp.text
    return client


@pytest.fixture
def make_user(stores: SimpleNamespace) -> Callable[..., User]:
    """Return a factory that inserts a user straight into the store."""

    def _make_user(
        username: str,
        group_id: int = MARKETING_GROUP_ID,
        password: str = USER_PASSWORD,
        is_blocked: bool = False,
    ) -> User:
        user_id = stores.user_store.create_user(
            User(
                username=username,
                email=f"{username}@example.com",
                hashed_password=hash_password(password),
                first_name=username.capitalize(),
                last_name="Tester",
                group_id=group_id,
                is_blocked=is_blocked,
            )
        )
        return stores.user_store.get_by_id(user_id)

    return _make_user


@pytest.fixture
def login_as(client: TestClient) -> Callable[..., TestClient]:
    """Return a function that signs in on a fresh TestClient with its own cookie jar.

    The fresh client is not entered as a context manager, so it reuses the
    app.state wired up by the client fixture instead of running the lifespan
    again.
    """

    def _login_as(username: str, password: str = USER_PASSWORD) -> TestClient:
        other = TestClient(app, raise_server_exceptions=True)
        resp = other.post("/api/v1/login", json={"username": username, "password": password})
        assert resp.status_code == 200, resp.text
        return other

    return _login_as
