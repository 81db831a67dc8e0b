"""
auth/models.py -- Domain dataclasses and enums for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores, the OTP engine
and the credential service do the work; these types only own domain shape.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    """Closed set of roles. AccessPolicy keeps a grant entry per member."""

    ADMIN = "ADMIN"
    USER = "USER"


class OtpPurpose(str, Enum):
    """What a one-time code proves. Each purpose has its own storage slot."""

    VERIFY_EMAIL = "VERIFY_EMAIL"
    RESET_PASSWORD = "RESET_PASSWORD"


@dataclass(frozen=True)
class Claims:
    """Identity facts carried inside a token.

    Timestamps are whole-second UTC datetimes (JWT NumericDate precision).
    """

    subject: str
    role: Role
    issuer: str
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class Identity:
    """Request-scoped result of a successful authentication.

    client_host is recorded for audit logging only; it never takes part in an
    authorization decision.
    """

    subject: str
    role: Role
    expires_at: datetime
    client_host: str | None = None


@dataclass
class User:
    """A registered account as held by the user store.

    otp_* and reset_otp_* are independent slots: an email-verification code and
    a password-reset code can be live at the same time without colliding.
    A new code of either kind overwrites the previous one in its slot.
    """

    username: str
    email: str
    password_hash: str
    role: Role = Role.USER
    id: int | None = None
    first_name: str | None = None
    last_name: str | None = None
    verified: bool = False
    otp_code: str | None = None
    otp_expires_at: datetime | None = None
    reset_otp_code: str | None = None
    reset_otp_expires_at: datetime | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class UserProfile:
    """Outward-facing view of a User. Never carries hashes or codes."""

    id: int | None
    username: str
    email: str
    role: Role
    verified: bool
    first_name: str | None = None
    last_name: str | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class Otp:
    code: str
    expires_at: datetime
    purpose: OtpPurpose


def to_profile(user: User) -> UserProfile:
    return UserProfile(
        id=user.id,
        username=user.username,
        email=user.email,
        role=user.role,
        verified=user.verified,
        first_name=user.first_name,
        last_name=user.last_name,
        created_at=user.created_at,
    )
