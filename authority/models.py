"""
authority/models.py -- Domain dataclasses and enums for the credential authority.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; the store, authenticator and service do the work.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum, IntEnum


class AuthorityLevel(IntEnum):
    """Coarse role gating administrative actions.

    IntEnum gives the total order for free (ADMIN > USER) and the integer is
    the value persisted in the credentials table.
    """

    USER = 0
    ADMIN = 1

    @classmethod
    def parse(cls, value: str) -> AuthorityLevel:
        """Look up a level by name, case-insensitive. Raises ValueError if unknown."""
        try:
            return cls[value.strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown authority level: {value!r}") from None


class Action(str, Enum):
    CHANGE_PASSWORD = "change_password"
    CHANGE_AUTHORITY = "change_authority"
    DELETE_USER = "delete_user"


class Decision(str, Enum):
    ALLOW = "allow"
    DENY = "deny"


@dataclass(frozen=True)
class Identity:
    """The resolved principal for one request.

    Never persisted and never cached across requests -- rebuilt from the
    store on every resolve() so authority changes and deletions apply on the
    very next request.
    """

    username: str
    authority: AuthorityLevel

    @property
    def is_admin(self) -> bool:
        return self.authority >= AuthorityLevel.ADMIN


@dataclass(frozen=True)
class Credential:
    """Persisted record for one username.

    password_hash is opaque bytes produced by the configured PasswordHasher.
    created_at is set by the store on insert and doubles as the credential's
    generation marker: tokens minted for an earlier credential with the same
    username do not match it.
    """

    username: str
    password_hash: bytes
    authority: AuthorityLevel = AuthorityLevel.USER
    created_at: str | None = None

    def identity(self) -> Identity:
        return Identity(username=self.username, authority=self.authority)


@dataclass(frozen=True)
class SessionToken:
    """A freshly minted session.

    value is the opaque string handed to the client; the remaining fields let
    the transport layer set cookie lifetimes without decoding it.
    """

    value: str
    username: str
    authority: AuthorityLevel  # at mint time; resolve() re-reads the store
    issued_at: datetime
    expires_at: datetime | None = None  # None = no explicit expiry
