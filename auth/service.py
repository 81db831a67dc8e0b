"""
auth/service.py -- CredentialService: registration, login and password reset.

Orchestrates the store, password hasher, token codec and OTP engine. Route
handlers call this class and translate its AuthError subclasses to HTTP.

Security design decisions:
  Enumeration: login() raises the same InvalidCredentials for an unknown
       account and a wrong password, and runs bcrypt in both cases (against
       a dummy hash when the account is absent) so response time does not
       reveal which one happened. NotVerified is only raised after the
       password checked out, so it leaks nothing to someone without it.

  Password reset: the reset code is checked by OtpEngine.verify() but only
       consumed here, in the same save() that writes the new hash. A code is
       therefore good for exactly one password change.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from auth.errors import AlreadyExists, AlreadyVerified, InvalidCredentials, NotVerified, UserNotFound
from auth.hashing import BcryptHasher
from auth.models import Otp, OtpPurpose, Role, User, UserProfile, to_profile
from auth.otp import OtpEngine
from auth.store import UserStore
from auth.tokens import TokenCodec

logger = logging.getLogger("tokengate.auth")


class CredentialService:
    def __init__(
        self,
        store: UserStore,
        hasher: BcryptHasher,
        codec: TokenCodec,
        otp: OtpEngine,
        token_ttl_seconds: int = 3600,
    ) -> None:
        self.store = store
        self.hasher = hasher
        self.codec = codec
        self.otp = otp
        self.token_ttl_seconds = token_ttl_seconds
        # Timing equalization for unknown accounts. Computed once so the first
        # failed login is not measurably slower than later ones.
        self._dummy_hash = hasher.hash("tokengate_timing_dummy")

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(
        self,
        username: str,
        email: str,
        password: str,
        role: Role = Role.USER,
        first_name: str | None = None,
        last_name: str | None = None,
    ) -> UserProfile:
        """Create an unverified account and mail it a verification code."""
        if self.store.exists_by_username_or_email(username, email):
            raise AlreadyExists()

        user = User(
            username=username,
            email=email,
            password_hash=self.hasher.hash(password),
            role=Role(role),
            first_name=first_name,
            last_name=last_name,
        )
        try:
            self.store.save(user)
        except IntegrityError as exc:
            # A concurrent registration won the unique index race
            raise AlreadyExists() from exc
        logger.info("Registered user id=%s role=%s", user.id, user.role.value)

        self.otp.issue(user.email, OtpPurpose.VERIFY_EMAIL)
        return to_profile(user)

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(self, username_or_email: str, password: str) -> str:
        """Return a signed token for a verified account with a matching password."""
        user = self.store.find_by_username_or_email(username_or_email)
        if user is None:
            # Equalize timing -- do NOT return before running bcrypt
            self.hasher.verify(password, self._dummy_hash)
            raise InvalidCredentials()
        if not self.hasher.verify(password, user.password_hash):
            raise InvalidCredentials()
        if not user.verified:
            raise NotVerified()
        return self.codec.issue(user.username, user.role, self.token_ttl_seconds)

    # ------------------------------------------------------------------
    # Email verification
    # ------------------------------------------------------------------

    def send_verification_otp(self, email: str) -> Otp:
        user = self.store.find_by_email(email)
        if user is None:
            raise UserNotFound()
        if user.verified:
            raise AlreadyVerified()
        return self.otp.regenerate(email, OtpPurpose.VERIFY_EMAIL)

    def verify_email(self, email: str, code: str) -> bool:
        return self.otp.verify(email, OtpPurpose.VERIFY_EMAIL, code)

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def send_password_reset_otp(self, email: str) -> Otp:
        return self.otp.regenerate(email, OtpPurpose.RESET_PASSWORD)

    def verify_reset_otp(self, email: str, code: str) -> bool:
        """Check a reset code without consuming it."""
        return self.otp.verify(email, OtpPurpose.RESET_PASSWORD, code)

    def update_password_with_otp(self, email: str, code: str, new_password: str) -> bool:
        """Replace the password if code is the live reset code; consume the code.

        Returns False (and changes nothing) when the code is missing, expired
        or wrong.
        """
        if not self.otp.verify(email, OtpPurpose.RESET_PASSWORD, code):
            return False
        user = self.store.find_by_email(email)
        if user is None:
            raise UserNotFound()
        user.password_hash = self.hasher.hash(new_password)
        self.otp.consume(user, OtpPurpose.RESET_PASSWORD)
        self.store.save(user)
        logger.info("Password updated for user id=%s", user.id)
        return True

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    def profile(self, username: str) -> UserProfile:
        user = self.store.find_by_username(username)
        if user is None:
            raise UserNotFound()
        return to_profile(user)

    def list_profiles(self) -> list[UserProfile]:
        return [to_profile(u) for u in self.store.list_users()]
