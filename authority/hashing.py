"""
authority/hashing.py -- Pluggable one-way password hashing.

The core never picks an algorithm itself: SessionAuthenticator and
CredentialAdministrationService receive a PasswordHasher at construction.
BcryptHasher is the default implementation wired by api/main.py and main.py.

bcrypt is used directly rather than through passlib: passlib's wrap-bug
detection builds a password longer than 72 bytes, which bcrypt 4.x rejects.
"""

from __future__ import annotations

from typing import Protocol

import bcrypt

from authority.exceptions import InvalidPassword

# bcrypt's input limit, in bytes of the UTF-8 encoding, not characters.
BCRYPT_MAX_PASSWORD_BYTES = 72


class PasswordHasher(Protocol):
    def hash(self, plaintext: str) -> bytes: ...

    def verify(self, plaintext: str, hashed: bytes) -> bool: ...


class BcryptHasher:
    """bcrypt with a configurable cost factor.

    hash() refuses passwords whose UTF-8 encoding exceeds 72 bytes instead of
    letting bcrypt truncate (4.x) or raise ValueError (5.x). A 72-character
    password with multi-byte characters is over the limit.
    """

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds

    def hash(self, plaintext: str) -> bytes:
        encoded = plaintext.encode("utf-8")
        if len(encoded) > BCRYPT_MAX_PASSWORD_BYTES:
            raise InvalidPassword(f"Password must be at most {BCRYPT_MAX_PASSWORD_BYTES} bytes when UTF-8 encoded")
        return bcrypt.hashpw(encoded, bcrypt.gensalt(rounds=self.rounds))

    def verify(self, plaintext: str, hashed: bytes) -> bool:
        """Constant-time check against a bcrypt hash.

        Malformed hashes verify False. So do over-long passwords, which bcrypt
        4.x would otherwise truncate into a match against a shorter one.
        """
        encoded = plaintext.encode("utf-8")
        if len(encoded) > BCRYPT_MAX_PASSWORD_BYTES:
            return False
        try:
            return bcrypt.checkpw(encoded, hashed)
        except (ValueError, TypeError):
            return False
