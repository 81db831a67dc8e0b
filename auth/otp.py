"""
auth/otp.py -- OtpEngine: issue, verify and regenerate one-time codes.

State per user and purpose (VERIFY_EMAIL / RESET_PASSWORD), held in the
purpose's own code + expiry slot on the user record:

    empty --issue--> active --verify ok--> empty           (VERIFY_EMAIL)
                     active --consume----> empty           (RESET_PASSWORD)
                     active --issue------> active (new code, old one dead)
                     active --time passes--> expired (still stored, never accepted)

Security:
  Codes come from secrets.randbelow(10**6), zero-padded to 6 digits, so every
  value in 000000-999999 is equally likely. A fresh code never equals the one
  it replaces, so an overwritten code is guaranteed dead.

  Candidate comparison uses hmac.compare_digest.

  regenerate() refuses while a code is still valid. That caps re-sends at one
  per lifetime per purpose and stops inbox flooding. Guess throttling on
  verify is the rate limiter's job (api/limiter.py).

Expiry is lazy: checked against the injected clock at verify time. Nothing
evicts expired codes; the next issue overwrites them.
"""

from __future__ import annotations

import hmac
import logging
import secrets
from datetime import datetime, timedelta

from auth.errors import OtpStillValid, UserNotFound
from auth.mailer import Mailer
from auth.models import Otp, OtpPurpose, User
from auth.store import UserStore
from core.clock import Clock, SystemClock

logger = logging.getLogger("tokengate.otp")

OTP_DIGITS = 6
DEFAULT_LIFETIME = timedelta(minutes=10)

_SUBJECTS = {
    OtpPurpose.VERIFY_EMAIL: "Verify your email address",
    OtpPurpose.RESET_PASSWORD: "Your password reset code",
}

_BODIES = {
    OtpPurpose.VERIFY_EMAIL: (
        "Hello {name},\n\n"
        "Your email verification code is {code}.\n"
        "It expires in {minutes} minutes.\n\n"
        "If you did not create an account, you can ignore this message."
    ),
    OtpPurpose.RESET_PASSWORD: (
        "Hello {name},\n\n"
        "Your password reset code is {code}.\n"
        "It expires in {minutes} minutes.\n\n"
        "If you did not ask to reset your password, you can ignore this message."
    ),
}


def generate_code(previous: str | None = None) -> str:
    """Return a uniformly random 6-digit code that differs from ``previous``."""
    while True:
        code = f"{secrets.randbelow(10**OTP_DIGITS):0{OTP_DIGITS}d}"
        if code != previous:
            return code


def _slot(user: User, purpose: OtpPurpose) -> tuple[str | None, datetime | None]:
    if purpose is OtpPurpose.VERIFY_EMAIL:
        return user.otp_code, user.otp_expires_at
    return user.reset_otp_code, user.reset_otp_expires_at


def _set_slot(user: User, purpose: OtpPurpose, code: str | None, expires_at: datetime | None) -> None:
    if purpose is OtpPurpose.VERIFY_EMAIL:
        user.otp_code, user.otp_expires_at = code, expires_at
    else:
        user.reset_otp_code, user.reset_otp_expires_at = code, expires_at


class OtpEngine:
    """Generates, stores and checks one-time codes on user records.

    Usage:
        engine = OtpEngine(store, mailer)
        engine.issue("alice@x.com", OtpPurpose.VERIFY_EMAIL)
        engine.verify("alice@x.com", OtpPurpose.VERIFY_EMAIL, "042917")  # True once
    """

    def __init__(
        self,
        store: UserStore,
        mailer: Mailer,
        clock: Clock | None = None,
        lifetime: timedelta = DEFAULT_LIFETIME,
    ) -> None:
        self.store = store
        self.mailer = mailer
        self.clock = clock or SystemClock()
        self.lifetime = lifetime

    def issue(self, email: str, purpose: OtpPurpose) -> Otp:
        """Store a fresh code for purpose (replacing any previous one) and mail it."""
        user = self._require_user(email)
        return self._issue_for(user, purpose)

    def regenerate(self, email: str, purpose: OtpPurpose) -> Otp:
        """Like issue(), but refuse with OtpStillValid while the current code is live."""
        user = self._require_user(email)
        code, expires_at = _slot(user, purpose)
        if code is not None and expires_at is not None and self.clock.now() <= expires_at:
            raise OtpStillValid(expires_at)
        return self._issue_for(user, purpose)

    def verify(self, email: str, purpose: OtpPurpose, candidate: str) -> bool:
        """Check candidate against the stored code.

        A failed check is a normal outcome (False), not an exception. On success
        a VERIFY_EMAIL code is consumed and the user marked verified; a
        RESET_PASSWORD code stays until consume() runs with the password change.
        """
        user = self._require_user(email)
        code, expires_at = _slot(user, purpose)
        if code is None or expires_at is None:
            return False
        if self.clock.now() > expires_at:
            logger.info("Expired %s code presented for user id=%s", purpose.value, user.id)
            return False
        if not hmac.compare_digest(code.encode("utf-8"), candidate.encode("utf-8")):
            return False

        if purpose is OtpPurpose.VERIFY_EMAIL:
            user.verified = True
            self.consume(user, purpose)
            self.store.save(user)
            logger.info("Email verified for user id=%s", user.id)
        return True

    def consume(self, user: User, purpose: OtpPurpose) -> None:
        """Clear the purpose's code + expiry on user. The caller saves."""
        _set_slot(user, purpose, None, None)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_user(self, email: str) -> User:
        user = self.store.find_by_email(email)
        if user is None:
            raise UserNotFound()
        return user

    def _issue_for(self, user: User, purpose: OtpPurpose) -> Otp:
        previous, _ = _slot(user, purpose)
        otp = Otp(
            code=generate_code(previous),
            expires_at=self.clock.now() + self.lifetime,
            purpose=purpose,
        )
        _set_slot(user, purpose, otp.code, otp.expires_at)
        self.store.save(user)
        logger.info("Issued %s code for user id=%s", purpose.value, user.id)
        self._notify(user, otp)
        return otp

    def _notify(self, user: User, otp: Otp) -> None:
        body = _BODIES[otp.purpose].format(
            name=user.first_name or user.username,
            code=otp.code,
            minutes=int(self.lifetime.total_seconds() // 60),
        )
        try:
            self.mailer.send(user.email, _SUBJECTS[otp.purpose], body)
        except Exception:
            # The stored code stays valid; the user can ask again once it expires.
            logger.exception("Failed to send %s code to user id=%s", otp.purpose.value, user.id)
