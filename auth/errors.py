"""
auth/errors.py -- Domain exceptions raised by the auth package.

Every exception carries a machine-readable ``code``. The API layer maps
exception classes to HTTP statuses in one place (api/main.py); nothing in
auth/ knows about HTTP.

Token errors are never raised past the AuthenticationPipeline -- it turns
them into a 401 before routing happens.
"""

from __future__ import annotations

from datetime import datetime


class AuthError(Exception):
    """Base class for all auth domain errors."""

    code = "auth_error"

    def __init__(self, message: str, detail: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail


# ---------------------------------------------------------------------------
# Token validation
# ---------------------------------------------------------------------------


class TokenError(AuthError):
    code = "invalid_token"


class MalformedToken(TokenError):
    code = "malformed_token"

    def __init__(self, message: str = "Token could not be parsed.") -> None:
        super().__init__(message)


class SignatureMismatch(TokenError):
    code = "invalid_signature"

    def __init__(self, message: str = "Token signature is invalid.") -> None:
        super().__init__(message)


class ExpiredToken(TokenError):
    code = "token_expired"

    def __init__(self, message: str = "Token has expired. Please log in again.") -> None:
        super().__init__(message)


# ---------------------------------------------------------------------------
# Accounts + credentials
# ---------------------------------------------------------------------------


class UserNotFound(AuthError):
    code = "user_not_found"

    def __init__(self, message: str = "User not found.") -> None:
        super().__init__(message)


class AlreadyExists(AuthError):
    code = "already_exists"

    def __init__(self, message: str = "A user with that username or email already exists.") -> None:
        super().__init__(message)


class AlreadyVerified(AuthError):
    code = "already_verified"

    def __init__(self, message: str = "Email address is already verified.") -> None:
        super().__init__(message)


class InvalidCredentials(AuthError):
    """Same error for unknown user and wrong password -- no enumeration."""

    code = "bad_credentials"

    def __init__(self, message: str = "Invalid username or password.") -> None:
        super().__init__(message)


class NotVerified(AuthError):
    code = "not_verified"

    def __init__(self, message: str = "Email address has not been verified.") -> None:
        super().__init__(message)


# ---------------------------------------------------------------------------
# OTP
# ---------------------------------------------------------------------------


class OtpStillValid(AuthError):
    code = "otp_still_valid"

    def __init__(self, expires_at: datetime) -> None:
        super().__init__(
            "A code was already sent and is still valid. Wait until it expires before requesting a new one.",
            detail=f"expires_at={expires_at.isoformat()}",
        )
        self.expires_at = expires_at
