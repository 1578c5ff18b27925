"""
tests/conftest.py -- Shared test fixtures for the credential authority.

This module provides:
  - core fixtures (store, hasher, signer, authenticator, policy, service) over
    a private in-memory SQLite database per test
  - login_as: fixture returning a helper that logs in and yields Bearer headers
  - api_client: TestClient with an admin session for HTTP integration tests

Design: the HTTP fixture uses a named shared-memory SQLite URI (not plain
:memory:) because TestClient runs sync route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread. The named URI shares one in-memory instance across all
connections in the same process.
The pool class is named explicitly: one connection per thread, which keeps
the shared in-memory database open while any handler thread holds it.

Environment must be set before any api/ or core/ import: DEBUG lets
get_settings() auto-generate SECRET_KEY, and the remaining overrides keep
bcrypt cheap, lift the login rate limit, and accept TestClient's Host header.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: set before any api/ or core/ import (settings are cached).
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import SingletonThreadPool

from authority.hashing import BcryptHasher
from authority.models import AuthorityLevel
from authority.policy import AuthorizationPolicy
from authority.service import CredentialAdministrationService
from authority.sessions import SessionAuthenticator
from authority.store import CredentialStore
from authority.tokens import TokenSigner

TEST_SECRET = "test-secret-key-that-is-at-least-32-chars"

ADMIN_USERNAME = "testadmin"
ADMIN_PASSWORD = "testpass123"

# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[CredentialStore, None, None]:
    s = CredentialStore("sqlite:///:memory:", timeout=1.0)
    yield s
    s.close()


@pytest.fixture
def hasher() -> BcryptHasher:
    # Minimum bcrypt cost -- the tests exercise behaviour, not strength.
    return BcryptHasher(rounds=4)


@pytest.fixture
def signer() -> TokenSigner:
    return TokenSigner(TEST_SECRET)


@pytest.fixture
def authenticator(store, hasher, signer) -> SessionAuthenticator:
    return SessionAuthenticator(store, hasher, signer)


@pytest.fixture
def policy() -> AuthorizationPolicy:
    return AuthorizationPolicy()


@pytest.fixture
def service(store, hasher, authenticator, policy) -> CredentialAdministrationService:
    return CredentialAdministrationService(store, hasher, authenticator, policy)


@pytest.fixture
def admin_token(service, authenticator) -> str:
    """Session token for a freshly registered ADMIN named 'admin'."""
    service.register("admin", "admin-pw", AuthorityLevel.ADMIN)
    return authenticator.login("admin", "admin-pw").value


# ---------------------------------------------------------------------------
# HTTP fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(store: CredentialStore):
    """Return a lifespan that wires the given test store into app.state.

    Uses api.main.build_components so tests exercise the same wiring as the
    real server, minus database creation from DATABASE_URL.
    """
    from api.main import build_components
    from core.config import get_settings

    @asynccontextmanager
    async def test_lifespan(app):
        build_components(app, get_settings(), store)
        yield

    return test_lifespan


def login_headers(client: TestClient, username: str, password: str) -> dict[str, str]:
    """Log in over HTTP and return a Bearer header.

    Clears the client's cookie jar afterwards so the login cookie does not leak
    into later requests made on behalf of other users.
    """
    resp = client.post("/api/v1/auth/login", json={"username": username, "password": password})
    assert resp.status_code == 200, resp.text
    client.cookies.clear()
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, dict[str, str]], None, None]:
    """Yield (client, admin_headers) for HTTP integration tests.

    One client and one in-memory database per test module. The admin user is
    created before the client starts; tests create their own users with unique
    names so module-level state does not couple them.
    """
    from api.main import app

    store = CredentialStore(
        f"sqlite:///file:test_auth_{request.module.__name__.rsplit('.', 1)[-1]}?mode=memory&cache=shared&uri=true",
        timeout=1.0,
        poolclass=SingletonThreadPool,
    )
    store.create(ADMIN_USERNAME, BcryptHasher(rounds=4).hash(ADMIN_PASSWORD), AuthorityLevel.ADMIN)

    app.router.lifespan_context = _patch_lifespan(store)

    with TestClient(app, raise_server_exceptions=True) as client:
        headers = login_headers(client, ADMIN_USERNAME, ADMIN_PASSWORD)
        yield client, headers

    store.close()


@pytest.fixture
def login_as(api_client):
    """Return a callable (username, password) -> Bearer headers for api_client."""
    client, _ = api_client

    def _login(username: str, password: str) -> dict[str, str]:
        return login_headers(client, username, password)

    return _login
