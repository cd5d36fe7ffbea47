"""
tests/conftest.py -- Shared test fixtures for EventDesk.

This module provides:
  - store / codec / service: isolated in-memory components for unit tests
  - fake_replica: a ReplicaClient stand-in that records calls
  - client: TestClient over the real app with a patched lifespan
  - use_cookies() / cleared_cookies(): cookie helpers for route tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. Every fixture gets its own database name so tests never share state.

Environment variables must be set before any api/ or core/ import so
get_settings() picks up fixed secrets and a cheap bcrypt cost.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager, suppress

# CRITICAL: set before importing anything that calls get_settings().
os.environ.setdefault("APP_ENV", "development")
os.environ.setdefault("ACCESS_SECRET", "a" * 32 + "-test-access-secret")
os.environ.setdefault("REFRESH_SECRET", "r" * 32 + "-test-refresh-secret")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("COOKIE_SECURE", "false")
os.environ.setdefault("CONVEX_URL", "")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.cookies import CookiePolicy
from auth.models import User
from auth.service import AuthService
from auth.store import AuthStore
from auth.tokens import TokenCodec
from replica.sync import ProfileSync

ACCESS_SECRET = os.environ["ACCESS_SECRET"]
REFRESH_SECRET = os.environ["REFRESH_SECRET"]
PASSWORD = "correct-horse-9"


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeReplicaClient:
    """Records upsert/delete calls; raises when fail=True."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.upserts: list[User] = []
        self.deletes: list[str] = []
        self.closed = False

    def upsert_user(self, user: User) -> dict:
        if self.fail:
            raise RuntimeError("replica unavailable")
        self.upserts.append(user)
        return {"status": "inserted"}

    def delete_user(self, user_id: str) -> None:
        if self.fail:
            raise RuntimeError("replica unavailable")
        self.deletes.append(user_id)

    def close(self) -> None:
        self.closed = True


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------


def _memory_url() -> str:
    return f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


@pytest.fixture
def store() -> Generator[AuthStore, None, None]:
    s = AuthStore(_memory_url())
    yield s
    s.close()


@pytest.fixture
def codec() -> TokenCodec:
    return TokenCodec(ACCESS_SECRET, REFRESH_SECRET, access_ttl_seconds=900, refresh_ttl_seconds=30 * 24 * 3600)


@pytest.fixture
def fake_replica() -> FakeReplicaClient:
    return FakeReplicaClient()


@pytest.fixture
def profile_sync(fake_replica: FakeReplicaClient) -> Generator[ProfileSync, None, None]:
    sync = ProfileSync(fake_replica)
    yield sync
    sync.shutdown(wait=True)


@pytest.fixture
def service(store: AuthStore, codec: TokenCodec, profile_sync: ProfileSync) -> AuthService:
    return AuthService(store, codec, profile_sync, bcrypt_rounds=4)


# ---------------------------------------------------------------------------
# App fixture
# ---------------------------------------------------------------------------


def _patch_lifespan(service: AuthService):
    """Return a lifespan that wires pre-built test components into app.state.

    The purge_task is a long-sleeping coroutine so shutdown can cancel a real
    asyncio.Task.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.auth_store = service.store
        app.state.profile_sync = service.profile_sync
        app.state.cookie_policy = CookiePolicy(secure=False, samesite="strict")
        app.state.auth_service = service
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()
        with suppress(asyncio.CancelledError):
            await app.state.purge_task

    return test_lifespan


@pytest.fixture
def client(service: AuthService) -> Generator[TestClient, None, None]:
    """TestClient over the real app, backed by this test's isolated store."""
    app.router.lifespan_context = _patch_lifespan(service)
    with TestClient(app, raise_server_exceptions=True) as c:
        yield c


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def use_cookies(client: TestClient, access: str | None = None, refresh: str | None = None) -> None:
    """Replace the client's cookie jar with exactly the given token cookies."""
    client.cookies.clear()
    if access is not None:
        client.cookies.set("access_token", access)
    if refresh is not None:
        client.cookies.set("refresh_token", refresh)


def cleared_cookies(resp) -> set[str]:
    """Names of cookies the response expires (Max-Age=0)."""
    headers = resp.headers.get_list("set-cookie")
    return {h.split("=", 1)[0] for h in headers if "max-age=0" in h.lower()}


def register(client: TestClient, email: str = "ada@example.com", password: str = PASSWORD, name: str = "Ada"):
    return client.post("/api/v1/auth/register", json={"name": name, "email": email, "password": password})
