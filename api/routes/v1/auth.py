"""
api/routes/v1/auth.py -- Session endpoints.

Routes:
  POST /api/v1/auth/login   -- password login; returns token and sets cookie
  POST /api/v1/auth/logout  -- clears cookie
  GET  /api/v1/auth/me      -- current identity (requires session)

Security:
  [H2] POST /login is rate-limited per client IP (LOGIN_RATE_LIMIT).
  [C1] SessionAuthenticator.login() equalizes timing between unknown users and
       wrong passwords -- never inline a store lookup + verify here.
  [M5] Cache-Control: no-store on login responses.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.dependencies import AUTH_COOKIE, get_authenticator, get_current_identity
from api.limiter import limiter, login_rate_limit
from api.models import AuthorityEnum, IdentityResponse, LoginRequest, LoginResponse, MessageResponse
from authority.models import Identity, SessionToken

router = APIRouter()


def _set_auth_cookie(request: Request, response: JSONResponse, token: SessionToken, expires_in: int | None) -> None:
    """Write the session token as an httpOnly cookie.

    samesite="lax" blocks the cookie on cross-site POSTs. Without a TTL the
    cookie is a browser-session cookie (no max_age), matching the token.
    """
    response.set_cookie(
        AUTH_COOKIE,
        value=token.value,
        httponly=True,
        samesite="lax",
        secure=request.app.state.settings.secure_cookies,
        max_age=expires_in,
    )


@limiter.limit(login_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password.

    InvalidCredentials propagates to the handler in api/main.py, which returns
    the same 401 body for unknown usernames and wrong passwords.
    """
    authenticator = get_authenticator(request)
    token = authenticator.login(body.username, body.password)

    expires_in = None
    if token.expires_at is not None:
        expires_in = int((token.expires_at - token.issued_at).total_seconds())

    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            access_token=token.value,
            token_type="bearer",  # noqa: S106 # nosec B106 -- token type, not a password
            expires_in=expires_in,
            username=token.username,
            authority=AuthorityEnum(token.authority.name),
        ).model_dump(mode="json"),
    )
    _set_auth_cookie(request, resp, token, expires_in)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/auth/logout", response_model=MessageResponse)
def logout() -> JSONResponse:
    """Clear the session cookie.

    Tokens are not revocable server-side; a bearer client ends its session by
    discarding the token.
    """
    resp = JSONResponse(content={"message": "Logged out."})
    resp.delete_cookie(AUTH_COOKIE)
    return resp


@router.get("/auth/me", response_model=IdentityResponse)
def me(identity: Identity = Depends(get_current_identity)) -> IdentityResponse:
    """Return the caller's identity with its current authority level."""
    return IdentityResponse.from_identity(identity)
