"""
api/routes/v1/auth.py -- Registration, login, OTP and password-reset endpoints.

Routes (all public -- listed in PUBLIC_PATHS via the /api/v1/auth prefix):
  POST /api/v1/auth/register                -- create unverified account, mail code
  POST /api/v1/auth/login                   -- username/email + password -> token
  POST /api/v1/auth/otp                     -- (re)send email verification code
  POST /api/v1/auth/otp/verify              -- confirm email with code
  POST /api/v1/auth/password/otp            -- send password reset code
  POST /api/v1/auth/password/otp/verify     -- check reset code (does not consume)
  POST /api/v1/auth/password                -- set new password with reset code

Security:
  Login and every code-checking endpoint is rate-limited per client IP.
  Login returns one generic 401 for unknown account and wrong password.
  Cache-Control: no-store on login responses.
  AuthError subclasses raised by CredentialService are turned into the error
  envelope by the handler in api/main.py -- routes do not catch them.

Handlers are sync `def`: bcrypt is CPU-bound and FastAPI runs sync handlers
in its threadpool, keeping the event loop free.

Rate-limited handlers carry @limiter.limit directly under @router.post, so the
route registers slowapi's wrapper. No `from __future__ import annotations`
here: FastAPI resolves the wrapper's annotations against slowapi's globals,
where string annotations would not resolve.
"""

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    EmailRequest,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    OtpVerifyRequest,
    PasswordUpdateRequest,
    RegisterRequest,
    UpdatedResponse,
    UserResponse,
    ValidResponse,
    VerifiedResponse,
)
from auth.models import Role
from auth.service import CredentialService
from core.config import get_settings

_settings = get_settings()

router = APIRouter()


def _service(request: Request) -> CredentialService:
    return request.app.state.credentials


# ---------------------------------------------------------------------------
# Registration + login
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=UserResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> UserResponse:
    """Create an unverified account and email it a verification code.

    Self-registration as ADMIN is refused unless ALLOW_ADMIN_REGISTRATION is set.
    """
    if body.role is Role.ADMIN and not request.app.state.settings.allow_admin_registration:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Administrator accounts cannot be self-registered."},
        )
    profile = _service(request).register(
        username=body.username,
        email=body.email,
        password=body.password,
        role=body.role,
        first_name=body.first_name,
        last_name=body.last_name,
    )
    return UserResponse.from_profile(profile)


@router.post("/auth/login", response_model=LoginResponse)
@limiter.limit(_settings.login_rate_limit)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username or email + password; return a Bearer token."""
    service = _service(request)
    token = service.login(body.username_or_email, body.password)
    claims = service.codec.validate(token)
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            access_token=token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=service.token_ttl_seconds,
            username=claims.subject,
            role=claims.role,
        ).model_dump(mode="json"),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Email verification
# ---------------------------------------------------------------------------


@router.post("/auth/otp", response_model=MessageResponse, status_code=202)
def generate_otp(request: Request, body: EmailRequest) -> MessageResponse:
    """Send a new verification code. 409 while the previous one is still valid."""
    _service(request).send_verification_otp(body.email)
    return MessageResponse(message="Verification code sent.")


@router.post("/auth/otp/verify", response_model=VerifiedResponse)
@limiter.limit(_settings.otp_rate_limit)
def verify_otp(request: Request, body: OtpVerifyRequest) -> VerifiedResponse:
    """Confirm an email address. A wrong or expired code is verified=false, not an error."""
    return VerifiedResponse(verified=_service(request).verify_email(body.email, body.code))


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@router.post("/auth/password/otp", response_model=MessageResponse, status_code=202)
def send_password_reset_otp(request: Request, body: EmailRequest) -> MessageResponse:
    _service(request).send_password_reset_otp(body.email)
    return MessageResponse(message="Password reset code sent.")


@router.post("/auth/password/otp/verify", response_model=ValidResponse)
@limiter.limit(_settings.otp_rate_limit)
def verify_reset_otp(request: Request, body: OtpVerifyRequest) -> ValidResponse:
    """Check a reset code without consuming it (lets a UI validate before asking for the new password)."""
    return ValidResponse(valid=_service(request).verify_reset_otp(body.email, body.code))


@router.post("/auth/password", response_model=UpdatedResponse)
@limiter.limit(_settings.otp_rate_limit)
def update_password(request: Request, body: PasswordUpdateRequest) -> UpdatedResponse:
    """Set a new password. The reset code is consumed on success; a replay gets updated=false."""
    updated = _service(request).update_password_with_otp(body.email, body.code, body.new_password)
    return UpdatedResponse(updated=updated)
