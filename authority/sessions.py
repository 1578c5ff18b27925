"""
authority/sessions.py -- Login and per-request identity resolution.

login() checks a username/password against the CredentialStore and mints a
session token. resolve() turns a token back into an Identity.

Timing equalization [C1]:
  login() always runs the password hasher, whether or not the username
  exists. Unknown usernames are verified against a dummy hash computed once
  at construction, so response time and error shape are the same for "no
  such user" and "wrong password".

Freshness:
  resolve() re-reads the credential on every call and builds the Identity
  from the stored authority, never from the token. Authority changes and
  deletions therefore apply on the next request without revocation lists.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging

from authority.exceptions import InvalidCredentials, Unauthenticated
from authority.hashing import PasswordHasher
from authority.models import Identity, SessionToken
from authority.store import CredentialStore
from authority.tokens import TokenSigner

logger = logging.getLogger("credauthority.auth")


class SessionAuthenticator:
    def __init__(self, store: CredentialStore, hasher: PasswordHasher, signer: TokenSigner) -> None:
        self.store = store
        self.hasher = hasher
        self.signer = signer
        # Computed once so the first failed login is not measurably slower
        # than later ones.
        self._dummy_hash: bytes = hasher.hash("credauthority_timing_dummy")

    def login(self, username: str, password: str) -> SessionToken:
        """Authenticate a username/password pair and mint a session token.

        Raises InvalidCredentials for an unknown username or wrong password
        (same message for both), StorageUnavailable if the store times out.
        """
        credential = self.store.find_by_username(username)
        if credential is None:
            # Equalize timing -- do NOT return before running the hasher [C1]
            self.hasher.verify(password, self._dummy_hash)
            logger.info("Login failed for unknown or invalid credentials")
            raise InvalidCredentials()
        if not self.hasher.verify(password, credential.password_hash):
            logger.info("Login failed for unknown or invalid credentials")
            raise InvalidCredentials()

        token = self.signer.mint(credential.username, credential.authority, credential.created_at or "")
        logger.info("Login succeeded for %s (%s)", credential.username, credential.authority.name)
        return token

    def resolve(self, token: str) -> Identity:
        """Return the current Identity bound to a token.

        Raises Unauthenticated if the token is malformed, expired, signed with
        another key, or its credential no longer exists (or was re-created).
        """
        claims = self.signer.verify(token)
        if claims is None:
            raise Unauthenticated("Invalid or expired session token")
        credential = self.store.find_by_username(claims.username)
        if credential is None or (credential.created_at or "") != claims.generation:
            logger.info("Session for %s no longer matches a credential", claims.username)
            raise Unauthenticated("Session is no longer valid")
        return credential.identity()
