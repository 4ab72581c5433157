"""
tests/conftest.py -- Shared test fixtures for ProjectGate.

This module provides:
  - settings:  development Settings with a fixed secret and bcrypt cost 4
  - store:     an isolated in-memory AuthStore per test
  - hasher / sessions / authz: the auth services wired to that store
  - app / client: the real FastAPI app (create_app) under TestClient
  - signed_cookie(): the cookie value the server would set for a token

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.
Each test gets its own name so state never leaks between tests.

bcrypt cost 4 (the minimum) keeps hashing fast; the cost only changes the
work factor, not the behaviour under test.
"""

from __future__ import annotations

import uuid
from collections.abc import Generator

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from starlette.responses import Response

from api.main import create_app
from auth.passwords import PasswordHasher
from auth.permissions import AuthorizationEngine
from auth.sessions import SESSION_COOKIE, SessionCookie, SessionStore
from auth.store import AuthStore
from core.config import Settings

TEST_SECRET = "test-session-secret-0123456789abcdef"
TEST_PASSWORD = "correct-horse-battery"

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def memory_db_url() -> str:
    return f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def signed_cookie(cookie: SessionCookie, token: str) -> str:
    """Return the signed value SessionCookie.set() would put on the wire for token."""
    resp = Response()
    cookie.set(resp, token)
    header = resp.headers["set-cookie"]
    first = header.split(";", 1)[0]
    name, _, value = first.partition("=")
    assert name == SESSION_COOKIE
    return value.strip('"')


def register(client: TestClient, email: str, password: str = TEST_PASSWORD, name: str = "Test User") -> str:
    """Register through the API (clearing any previous cookie) and return the new user's ID."""
    client.cookies.clear()
    resp = client.post("/api/v1/auth/register", json={"email": email, "name": name, "password": password})
    assert resp.status_code == 201, resp.text
    return resp.json()["user"]["id"]


def login_as(client: TestClient, email: str, password: str = TEST_PASSWORD) -> None:
    client.cookies.clear()
    resp = client.post("/api/v1/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.text


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        env="development",
        session_secret=TEST_SECRET,
        bcrypt_cost=4,
    )


@pytest.fixture
def store() -> Generator[AuthStore, None, None]:
    s = AuthStore(memory_db_url())
    yield s
    s.close()


@pytest.fixture
def hasher(settings: Settings) -> PasswordHasher:
    return PasswordHasher(cost=settings.bcrypt_cost)


@pytest.fixture
def sessions(store: AuthStore, settings: Settings) -> SessionStore:
    return SessionStore(store, ttl=settings.session_ttl)


@pytest.fixture
def authz(store: AuthStore) -> AuthorizationEngine:
    return AuthorizationEngine(store)


@pytest.fixture
def app(settings: Settings, store: AuthStore) -> FastAPI:
    return create_app(settings, store=store)


@pytest.fixture
def client(app: FastAPI) -> Generator[TestClient, None, None]:
    """TestClient over the real app. Entering the context runs the lifespan."""
    with TestClient(app, raise_server_exceptions=True) as c:
        yield c
