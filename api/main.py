"""
api/main.py -- FastAPI application entry point for the credential authority.

Thin transport layer: it wires the core components from settings, extracts
session tokens from requests, and maps core exceptions to HTTP responses.
Every authentication and authorization decision lives in authority/.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan builds the store, hasher, signer, authenticator, policy and admin
service on startup and disposes the store's engine on shutdown.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException

from api.dependencies import get_current_identity
from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.users import router as users_router
from authority.exceptions import (
    AuthorityError,
    DuplicateUsername,
    Forbidden,
    InvalidCredentials,
    InvalidPassword,
    StorageUnavailable,
    Unauthenticated,
    UserNotFound,
)
from authority.hashing import BcryptHasher
from authority.models import Identity
from authority.policy import AuthorizationPolicy
from authority.service import CredentialAdministrationService
from authority.sessions import SessionAuthenticator
from authority.store import CredentialStore
from authority.tokens import TokenSigner
from core.config import Settings, get_settings

API_VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("credauthority.api")

_settings = get_settings()


# ---------------------------------------------------------------------------
# Component wiring
# ---------------------------------------------------------------------------


def build_components(app: FastAPI, settings: Settings, store: CredentialStore) -> None:
    """Attach the core components to app.state.

    Split out of lifespan so tests can wire an isolated store with the same
    code path the server uses.
    """
    hasher = BcryptHasher(rounds=settings.bcrypt_rounds)
    signer = TokenSigner(settings.secret_key, ttl_seconds=settings.token_expire_seconds)
    authenticator = SessionAuthenticator(store, hasher, signer)
    policy = AuthorizationPolicy(settings.self_service_actions)
    app.state.settings = settings
    app.state.store = store
    app.state.authenticator = authenticator
    app.state.admin_service = CredentialAdministrationService(store, hasher, authenticator, policy)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create the credential store and core services; dispose them on shutdown."""
    settings = get_settings()
    logger.info("Credential authority starting up")
    store = CredentialStore(settings.database_url, timeout=settings.storage_timeout_seconds)
    build_components(app, settings, store)
    if not store.has_admin():
        logger.warning("No ADMIN credential exists -- create one with: python main.py create-user <name> --admin")
    logger.info(
        "Store initialized (%d credentials, session ttl=%s)",
        store.count(),
        settings.token_expire_seconds or "none",
    )

    yield

    store.close()
    logger.info("Credential authority shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Credential Authority API",
    description="Username/password login, session resolution and policy-checked credential administration.",
    version=API_VERSION,
    lifespan=lifespan,
    # Built-in /docs and /redoc are replaced below by session-protected routes.
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(users_router, prefix="/api/v1", tags=["Users"])


# ---------------------------------------------------------------------------
# Session-protected API documentation
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False)
def docs(identity: Identity = Depends(get_current_identity)):
    """Swagger UI -- requires a session."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="Credential Authority API")


@app.get("/redoc", include_in_schema=False)
def redoc(identity: Identity = Depends(get_current_identity)):
    """ReDoc UI -- requires a session."""
    return get_redoc_html(openapi_url="/openapi.json", title="Credential Authority API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------

# Leaf classes only -- none of them subclasses another, so order is irrelevant.
_ERROR_STATUS: dict[type[AuthorityError], tuple[int, str]] = {
    InvalidCredentials: (401, "bad_credentials"),
    Unauthenticated: (401, "unauthorized"),
    Forbidden: (403, "forbidden"),
    UserNotFound: (404, "not_found"),
    DuplicateUsername: (409, "conflict"),
    InvalidPassword: (422, "invalid_password"),
    StorageUnavailable: (503, "storage_unavailable"),
}


def _error_response(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(AuthorityError)
async def authority_error_handler(request: Request, exc: AuthorityError) -> JSONResponse:
    """Map the core error taxonomy to HTTP.

    StorageUnavailable adds Retry-After: the failure is transient and the
    core never retries on the caller's behalf.
    """
    status_code, code = next(
        (mapping for cls, mapping in _ERROR_STATUS.items() if isinstance(exc, cls)),
        (500, "internal_error"),
    )
    response = _error_response(status_code, code, exc.message)
    if isinstance(exc, StorageUnavailable):
        response.headers["Retry-After"] = "1"
    if isinstance(exc, InvalidCredentials):
        response.headers["Cache-Control"] = "no-store"  # [M5]
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error_response(429, "rate_limited", "Too many requests.", str(exc))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or path params fail validation."""
    return _error_response(422, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for FastAPI/Starlette HTTP exceptions (404 routes, 405, ...)."""
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# No rate limit and no auth -- load balancers must be able to poll it.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", response_model=HealthResponse, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness, version, and whether the credential store answers."""
    db_ok = request.app.state.store.ping()
    return HealthResponse(
        status="healthy" if db_ok else "degraded",
        version=API_VERSION,
        components={"app": "ok", "database": "ok" if db_ok else "error"},
    )
