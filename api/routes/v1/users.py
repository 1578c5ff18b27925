"""
api/routes/v1/users.py -- Registration and credential administration endpoints.

Routes:
  POST   /api/v1/users                       -- register (public, USER authority)
  PUT    /api/v1/users/{username}/password   -- self-service or admin
  PUT    /api/v1/users/{username}/authority  -- admin
  DELETE /api/v1/users/{username}            -- admin

Auth policy:
  Routes do not decide who may do what. They hand the raw session token to
  CredentialAdministrationService, which resolves the actor and asks the
  AuthorizationPolicy. Core errors propagate to the handlers in api/main.py.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Path, Request, Response

from api.dependencies import get_admin_service, get_session_token
from api.models import (
    USERNAME_PATTERN,
    IdentityResponse,
    RegisterRequest,
    UpdateAuthorityRequest,
    UpdatePasswordRequest,
)
from authority.exceptions import Forbidden
from authority.service import CredentialAdministrationService

router = APIRouter()

_TargetUsername = Annotated[str, Path(min_length=1, max_length=255, pattern=USERNAME_PATTERN)]


@router.post("/users", response_model=IdentityResponse, status_code=201)
def register(
    request: Request,
    body: RegisterRequest,
    service: CredentialAdministrationService = Depends(get_admin_service),
) -> IdentityResponse:
    """Create a USER account. Returns 409 if the username is taken.

    Disabled (403) when SELF_REGISTRATION_ENABLED=false; operators then create
    accounts with the admin CLI.
    """
    if not request.app.state.settings.self_registration_enabled:
        raise Forbidden("Self-registration is disabled")
    identity = service.register(body.username, body.password)
    return IdentityResponse.from_identity(identity)


@router.put("/users/{username}/password", status_code=204)
def update_password(
    username: _TargetUsername,
    body: UpdatePasswordRequest,
    token: str = Depends(get_session_token),
    service: CredentialAdministrationService = Depends(get_admin_service),
) -> Response:
    """Change a password. Users may change their own; admins anyone's."""
    service.change_password(token, username, body.password)
    return Response(status_code=204)


@router.put("/users/{username}/authority", status_code=204)
def update_authority(
    username: _TargetUsername,
    body: UpdateAuthorityRequest,
    token: str = Depends(get_session_token),
    service: CredentialAdministrationService = Depends(get_admin_service),
) -> Response:
    """Set a user's authority level. Admin only (self-escalation is denied)."""
    service.change_authority(token, username, body.authority.to_level())
    return Response(status_code=204)


@router.delete("/users/{username}", status_code=204)
def delete_user(
    username: _TargetUsername,
    token: str = Depends(get_session_token),
    service: CredentialAdministrationService = Depends(get_admin_service),
) -> Response:
    """Delete an account. Existing sessions for it stop resolving immediately."""
    service.delete_user(token, username)
    return Response(status_code=204)
