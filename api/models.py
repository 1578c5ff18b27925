"""
API request and response models for the credential authority REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in authority/models.py,
which own the internal domain representation. Route handlers map between the
two field by field.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from authority.models import AuthorityLevel, Identity

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Usernames appear in URL paths, so slashes and whitespace are excluded.
USERNAME_PATTERN = r"^[A-Za-z0-9_.@+-]+$"

# bcrypt takes at most 72 bytes of UTF-8; the character cap is a cheap first
# cut and _check_password_bytes enforces the real limit on new passwords.
PASSWORD_MAX_LENGTH = 72
PASSWORD_MAX_BYTES = 72


def _check_password_bytes(value: str) -> str:
    if len(value.encode("utf-8")) > PASSWORD_MAX_BYTES:
        raise ValueError(f"password must be at most {PASSWORD_MAX_BYTES} bytes when UTF-8 encoded")
    return value


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class AuthorityEnum(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"

    def to_level(self) -> AuthorityLevel:
        return AuthorityLevel[self.value]


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=PASSWORD_MAX_LENGTH)


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/users."""

    username: str = Field(min_length=1, max_length=255, pattern=USERNAME_PATTERN)
    password: str = Field(min_length=1, max_length=PASSWORD_MAX_LENGTH)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _check_password_bytes(value)


class UpdatePasswordRequest(BaseModel):
    """Request body for PUT /api/v1/users/{username}/password."""

    password: str = Field(min_length=1, max_length=PASSWORD_MAX_LENGTH)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _check_password_bytes(value)


class UpdateAuthorityRequest(BaseModel):
    """Request body for PUT /api/v1/users/{username}/authority.

    Accepts "user"/"admin" in any case; normalized before enum validation.
    """

    authority: AuthorityEnum

    @field_validator("authority", mode="before")
    @classmethod
    def normalize_authority(cls, value):
        return value.strip().upper() if isinstance(value, str) else value


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class LoginResponse(BaseModel):
    """Response for a successful login. expires_in is None for non-expiring sessions."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_in: Optional[int] = None
    username: str
    authority: AuthorityEnum


class IdentityResponse(BaseModel):
    """The authenticated principal -- GET /auth/me and POST /users."""

    model_config = ConfigDict(frozen=True)

    username: str
    authority: AuthorityEnum

    @classmethod
    def from_identity(cls, identity: Identity) -> "IdentityResponse":
        return cls(username=identity.username, authority=AuthorityEnum(identity.authority.name))


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
