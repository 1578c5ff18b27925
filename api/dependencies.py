"""
api/dependencies.py -- FastAPI Depends() helpers for session handling.

The session token is read from, in priority order:
  1. Authorization: Bearer <token> -- API clients
  2. the "access_token" cookie -- set by POST /auth/login for browser clients

An explicit header wins over an ambient cookie.

Both converge on the raw token string. Resolution to an Identity happens in
the core (SessionAuthenticator.resolve), which re-reads the credential store
on every request -- nothing here caches identity.

Core exceptions (Unauthenticated, Forbidden, ...) are raised as-is; the
handlers in api/main.py map them to HTTP responses.
"""

from __future__ import annotations

from fastapi import Request

from authority.exceptions import Unauthenticated
from authority.models import Identity
from authority.service import CredentialAdministrationService
from authority.sessions import SessionAuthenticator

AUTH_COOKIE = "access_token"


def get_authenticator(request: Request) -> SessionAuthenticator:
    return request.app.state.authenticator


def get_admin_service(request: Request) -> CredentialAdministrationService:
    return request.app.state.admin_service


def get_session_token(request: Request) -> str:
    """Extract the raw session token. Raises Unauthenticated if none is presented."""
    token: str | None = None
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
    if not token:
        token = request.cookies.get(AUTH_COOKIE)
    if not token:
        raise Unauthenticated()
    return token


def get_current_identity(request: Request) -> Identity:
    """Require a valid session and return the caller's current Identity.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(identity: Identity = Depends(get_current_identity)): ...
    """
    return get_authenticator(request).resolve(get_session_token(request))
