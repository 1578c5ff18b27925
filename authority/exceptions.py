"""Credential authority exceptions.

Every failure the core reports is one of these. Storage driver errors are
translated at the store boundary so raw constraint or connection messages
never reach a caller. The HTTP layer maps each class to a status code.
"""


class AuthorityError(Exception):
    """Base exception for all credential authority errors."""

    def __init__(self, message: str = "Credential authority error"):
        self.message = message
        super().__init__(self.message)


class InvalidCredentials(AuthorityError):
    """Raised when a login's username or password is wrong.

    The message is identical for both cases so callers cannot tell which.
    """

    def __init__(self, message: str = "Invalid username or password"):
        super().__init__(message)


class Unauthenticated(AuthorityError):
    """Raised when a session token is missing, malformed, expired, or orphaned."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class Forbidden(AuthorityError):
    """Raised when a valid session lacks the authority for the requested action."""

    def __init__(self, message: str = "Not permitted"):
        super().__init__(message)


class UserNotFound(AuthorityError):
    """Raised when the target username has no credential at mutation time."""

    def __init__(self, username: str):
        self.username = username
        super().__init__(f"User {username!r} not found")


class DuplicateUsername(AuthorityError):
    """Raised when registering a username that already has a credential."""

    def __init__(self, username: str):
        self.username = username
        super().__init__(f"Username {username!r} is already taken")


class StorageUnavailable(AuthorityError):
    """Raised on a transient backend failure or timeout. Safe to retry."""

    def __init__(self, message: str = "Credential store is temporarily unavailable"):
        super().__init__(message)


class InvalidPassword(AuthorityError):
    """Raised when a new password cannot be hashed (empty or over the hasher's byte limit)."""

    def __init__(self, message: str = "Password is not acceptable"):
        super().__init__(message)
