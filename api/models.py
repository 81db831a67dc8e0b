"""
API request and response models for TokenGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from auth.models import Role, UserProfile

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# No "@" in usernames: a username must never be mistakable for an email on
# the username-or-email login path.
USERNAME_PATTERN = r"^[A-Za-z0-9_.-]{3,50}$"
OTP_PATTERN = r"^\d{6}$"

# bcrypt only looks at the first 72 bytes and bcrypt>=4.1 rejects longer input
_MAX_PASSWORD_BYTES = 72


def _check_password_bytes(value: str) -> str:
    if len(value.encode("utf-8")) > _MAX_PASSWORD_BYTES:
        raise ValueError(f"Password must be at most {_MAX_PASSWORD_BYTES} bytes when UTF-8 encoded.")
    return value


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    username: str = Field(pattern=USERNAME_PATTERN)
    email: EmailStr
    password: str = Field(min_length=8)
    role: Role = Role.USER
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _check_password_bytes(value)


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login. Accepts a username or an email."""

    username_or_email: str = Field(min_length=1, max_length=320)
    password: str = Field(min_length=1)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        # No stored password can be longer, so this refuses nothing valid
        return _check_password_bytes(value)


class EmailRequest(BaseModel):
    """Request body for the endpoints that (re)send a code."""

    email: EmailStr


class OtpVerifyRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: EmailStr
    code: str = Field(pattern=OTP_PATTERN)


class PasswordUpdateRequest(BaseModel):
    """Request body for POST /api/v1/auth/password."""

    email: EmailStr
    code: str = Field(pattern=OTP_PATTERN)
    new_password: str = Field(min_length=8)

    @field_validator("new_password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _check_password_bytes(value)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public view of an account. Never includes hashes or codes."""

    id: int
    username: str
    email: str
    role: Role
    verified: bool
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    created_at: str = ""

    @classmethod
    def from_profile(cls, profile: UserProfile) -> "UserResponse":
        return cls(
            id=profile.id,
            username=profile.username,
            email=profile.email,
            role=profile.role,
            verified=profile.verified,
            first_name=profile.first_name,
            last_name=profile.last_name,
            created_at=profile.created_at or "",
        )


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    username: str
    role: Role


class MessageResponse(BaseModel):
    message: str


class VerifiedResponse(BaseModel):
    verified: bool


class ValidResponse(BaseModel):
    valid: bool


class UpdatedResponse(BaseModel):
    updated: bool


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

    status: str = "ok"
    version: str
