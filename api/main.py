"""
api/main.py -- FastAPI application entry point for TokenGate.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware  -- rejects requests with unexpected Host headers
  2. CORSMiddleware         -- adds CORS headers for allowed browser origins
  3. log_requests           -- method, path, status, latency, client
  4. SlowAPIMiddleware      -- enforces per-route rate limits from api.limiter
  5. AuthenticationPipeline -- Bearer token -> request.state.identity, or 401
  6. AccessGuard            -- AccessPolicy decision, 401/403 before routing

Lifespan wires the store, codec, OTP engine and credential service onto
app.state on startup and disposes the store on shutdown. No session store
exists: every request is authenticated from its token alone.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.users import router as users_router
from auth.dependencies import get_identity
from auth.errors import (
    AlreadyExists,
    AlreadyVerified,
    AuthError,
    InvalidCredentials,
    NotVerified,
    OtpStillValid,
    TokenError,
    UserNotFound,
)
from auth.hashing import BcryptHasher
from auth.mailer import LogMailer, Mailer, SmtpMailer
from auth.models import Identity, Role
from auth.otp import OtpEngine
from auth.pipeline import AccessGuard, AuthenticationPipeline
from auth.policy import AccessPolicy
from auth.service import CredentialService
from auth.store import UserStore
from auth.tokens import TokenCodec
from core.clock import Clock, SystemClock
from core.config import Settings, get_settings

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("tokengate.api")

_settings = get_settings()

# HTTP status per domain error. Subclasses not listed fall back to 400.
_ERROR_STATUS: dict[type[AuthError], int] = {
    TokenError: 401,
    InvalidCredentials: 401,
    NotVerified: 403,
    UserNotFound: 404,
    AlreadyExists: 409,
    AlreadyVerified: 409,
    OtpStillValid: 409,
}


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def build_mailer(settings: Settings) -> Mailer:
    if not settings.smtp_host:
        logger.warning("SMTP_HOST not set -- verification codes will be written to the log")
        return LogMailer()
    return SmtpMailer(
        host=settings.smtp_host,
        port=settings.smtp_port,
        sender=settings.mail_from,
        username=settings.smtp_username,
        password=settings.smtp_password,
        use_tls=settings.smtp_use_tls,
    )


def wire_app_state(
    app: FastAPI,
    settings: Settings,
    store: UserStore,
    mailer: Mailer,
    clock: Clock | None = None,
    hasher: BcryptHasher | None = None,
) -> None:
    """Build the auth components from settings and attach them to app.state.

    Shared by the production lifespan and the test lifespan so both run the
    exact same object graph, differing only in store, mailer, clock and hasher.
    """
    clock = clock or SystemClock()
    codec = TokenCodec(
        settings.secret_key,
        issuer=settings.token_issuer,
        leeway_seconds=settings.token_leeway_seconds,
        clock=clock,
    )
    otp = OtpEngine(store, mailer, clock=clock, lifetime=timedelta(minutes=settings.otp_expire_minutes))
    app.state.settings = settings
    app.state.user_store = store
    app.state.token_codec = codec
    app.state.otp_engine = otp
    app.state.credentials = CredentialService(
        store,
        hasher or BcryptHasher(),
        codec,
        otp,
        token_ttl_seconds=settings.token_expire_seconds,
    )


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Everything before yield runs on startup; everything after on shutdown."""
    logger.info("TokenGate API starting up")
    settings = get_settings()
    store = UserStore(settings.database_url)
    wire_app_state(app, settings, store, build_mailer(settings))
    logger.info("Auth initialized (issuer=%s, token_ttl=%ss)", settings.token_issuer, settings.token_expire_seconds)

    yield

    app.state.user_store.close()
    logger.info("TokenGate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="TokenGate API",
    description="Stateless token authentication with email OTP verification and password reset.",
    version=VERSION,
    lifespan=lifespan,
    # Built-in /docs and /redoc are replaced by authenticated equivalents below.
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Each add_middleware() call wraps everything registered before it, so the
# registration order below is innermost first.
# ---------------------------------------------------------------------------

access_policy = AccessPolicy(
    public_prefixes=_settings.public_paths,
    role_prefixes={prefix: Role.ADMIN for prefix in _settings.admin_paths},
)

app.add_middleware(BaseHTTPMiddleware, dispatch=AccessGuard(access_policy))
app.add_middleware(BaseHTTPMiddleware, dispatch=AuthenticationPipeline())
app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


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


app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(users_router, prefix="/api/v1", tags=["Users"])


# ---------------------------------------------------------------------------
# Auth-protected API documentation
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False)
async def docs(identity: Identity = Depends(get_identity)):
    """Swagger UI -- requires authentication."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="TokenGate API")


@app.get("/redoc", include_in_schema=False)
async def redoc(identity: Identity = Depends(get_identity)):
    """ReDoc UI -- requires authentication."""
    return get_redoc_html(openapi_url="/openapi.json", title="TokenGate API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every error body is {"error": {code, message, detail}}, the same shape the
# auth middleware writes for 401/403, so clients branch on error.code alone.
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str, detail: str | None = None, headers=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
        headers=headers,
    )


def _status_for(exc: AuthError) -> int:
    for cls in type(exc).__mro__:
        if cls in _ERROR_STATUS:
            return _ERROR_STATUS[cls]
    return 400


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Map domain errors raised by CredentialService/OtpEngine to HTTP."""
    status_code = _status_for(exc)
    headers = {"Cache-Control": "no-store"}
    if status_code == 401:
        headers["WWW-Authenticate"] = "Bearer"
    return _error(status_code, exc.code, exc.message, exc.detail, headers=headers)


@app.exception_handler(RateLimitExceeded)
def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """429 for login/OTP endpoints hit too often from one client.

    Sync on purpose: SlowAPIMiddleware calls this handler directly and does
    not await it.
    """
    logger.warning("Rate limit hit on %s from %s", request.url.path, request.client.host if request.client else "?")
    return _error(
        429,
        "rate_limited",
        "Too many attempts. Try again later.",
        detail=str(exc.detail),
        headers={"Retry-After": "60"},
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """422 listing each failing field.

    Only location and message are reported. pydantic's error dicts also carry
    the rejected input, which for these bodies can be a password.
    """
    problems = "; ".join(
        f"{'.'.join(str(part) for part in err.get('loc', ()) if part != 'body')}: {err.get('msg', 'invalid')}"
        for err in exc.errors()
    )
    return _error(422, "validation_error", "Request validation failed.", detail=problems or None)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Wrap HTTPException in the error envelope.

    Dependencies and routes raise with detail={"code", "message"}; plain
    string details (404 for unknown routes, 405, ...) get an http_<status> code.
    """
    if isinstance(exc.detail, dict):
        detail = exc.detail
        return _error(
            exc.status_code,
            detail.get("code", f"http_{exc.status_code}"),
            detail.get("message", ""),
            detail.get("detail"),
            headers=exc.headers,
        )
    return _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail), headers=exc.headers)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last resort 500. The traceback goes to the log, never to the client."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness and current version."""
    return HealthResponse(version=VERSION)
