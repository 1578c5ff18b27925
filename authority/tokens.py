"""
authority/tokens.py -- Signed session token issuance and verification.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY, so their
       authenticity is checked without a storage round trip. The store is
       consulted afterwards only for freshness (does the credential still
       exist, what is its current authority).

  Claims:
       sub  -- username the session is bound to
       ver  -- created_at of the credential at mint time; a token from a
               deleted-then-re-registered username will not match
       auth -- authority name at mint time (informational; never trusted)
       iat  -- issue time
       jti  -- 128-bit random nonce so two logins never produce equal tokens
       exp  -- only present when a TTL is configured

  Verification returns None on any failure. SessionAuthenticator turns that
  into Unauthenticated.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from authority.models import AuthorityLevel, SessionToken

_ALGORITHM = "HS256"


@dataclass(frozen=True)
class TokenClaims:
    username: str
    generation: str


class TokenSigner:
    """Mints and verifies HS256 session tokens.

    ttl_seconds=None (default) mints tokens without an exp claim -- sessions
    last until the credential is deleted. A positive value bounds them.
    """

    def __init__(self, secret_key: str, ttl_seconds: int | None = None) -> None:
        if len(secret_key) < 32:
            raise ValueError("Token signing key must be at least 32 characters.")
        if ttl_seconds is not None and ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive or None.")
        self._secret_key = secret_key
        self.ttl_seconds = ttl_seconds

    def mint(self, username: str, authority: AuthorityLevel, generation: str) -> SessionToken:
        issued_at = datetime.now(timezone.utc)
        payload = {
            "sub": username,
            "ver": generation,
            "auth": authority.name,
            "iat": issued_at,
            "jti": secrets.token_urlsafe(16),
        }
        expires_at = None
        if self.ttl_seconds is not None:
            expires_at = issued_at + timedelta(seconds=self.ttl_seconds)
            payload["exp"] = expires_at
        value = jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)
        return SessionToken(
            value=value,
            username=username,
            authority=authority,
            issued_at=issued_at,
            expires_at=expires_at,
        )

    def verify(self, token: str) -> TokenClaims | None:
        """Check signature and expiry. Returns the bound claims or None on any failure."""
        if not token:
            return None
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[_ALGORITHM])
        except JWTError:
            return None
        username = payload.get("sub")
        generation = payload.get("ver")
        if not isinstance(username, str) or not isinstance(generation, str) or not username:
            return None
        return TokenClaims(username=username, generation=generation)
