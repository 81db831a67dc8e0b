"""
auth/hashing.py -- Password hashing (bcrypt, direct usage, no passlib wrapper).

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error.

bcrypt.checkpw compares in constant time, so verify() is safe to use on the
login path.
"""

from __future__ import annotations

import logging

import bcrypt

logger = logging.getLogger("tokengate.auth")


class BcryptHasher:
    """One-way password hash + verify."""

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds

    def hash(self, plain: str) -> str:
        """Return a bcrypt hash of the given plaintext password.

        Passwords longer than 72 bytes are rejected by bcrypt 4.x; the API
        layer caps password length well below that.
        """
        return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plain: str, hashed: str) -> bool:
        """Return True if the plaintext password matches the bcrypt hash."""
        try:
            return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
        except ValueError:
            # Unparseable stored hash, or (bcrypt>=5) a candidate over 72 bytes
            logger.warning("bcrypt rejected the password check input")
            return False
