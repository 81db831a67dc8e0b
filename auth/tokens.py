"""
auth/tokens.py -- TokenCodec: issue and validate signed, stateless tokens.

Security design decisions:
  Format: a standard compact JWS/JWT -- three base64url segments joined by
       "." (header {alg, typ}, payload {sub, role, iss, iat, exp}, signature).
       Issuing goes through python-jose so the output is bit-compatible with
       any JWT client library.

  Algorithm: HS256 only. The header alg is checked before anything else, so
       "alg": "none" and RS/HS confusion tokens are rejected as malformed.

  Validation is done in explicit steps rather than via jwt.decode() so each
       failure class is distinguishable (MalformedToken, SignatureMismatch,
       ExpiredToken). jwt.decode() collapses signature failures into a generic
       JWTError and reads its own clock.

  Signature check: the expected signature is recomputed with the HMAC key,
       base64url-encoded, and compared to the received segment with
       hmac.compare_digest. Comparing the encoded segment means a
       non-canonical encoding of a correct signature is also rejected.

  Clock: expiry is evaluated against the injected clock. There is no grace
       window unless leeway_seconds is configured.

  No store: validate() never touches a database. Validity is fully
       reconstructable from token + secret + clock.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import hmac
import json
import logging
from datetime import datetime, timezone

from jose import jwk, jwt
from jose.utils import base64url_decode, base64url_encode

from auth.errors import ExpiredToken, MalformedToken, SignatureMismatch
from auth.models import Claims, Role
from core.clock import Clock, SystemClock

logger = logging.getLogger("tokengate.auth")

ALGORITHM = "HS256"

_REQUIRED_CLAIMS = ("sub", "role", "iss", "iat", "exp")

# Real header and payload segments are a few hundred characters at most.
_MAX_SEGMENT_LENGTH = 4096


class TokenCodec:
    """Issue and validate HS256 identity tokens.

    Usage:
        codec = TokenCodec(settings.secret_key, issuer="tokengate")
        token = codec.issue("alice", Role.USER, ttl_seconds=3600)
        claims = codec.validate(token)   # raises TokenError subclasses
    """

    def __init__(
        self,
        secret_key: str,
        issuer: str,
        leeway_seconds: int = 0,
        clock: Clock | None = None,
    ) -> None:
        if not secret_key:
            raise ValueError("TokenCodec requires a non-empty secret key.")
        if leeway_seconds < 0:
            raise ValueError("leeway_seconds must not be negative.")
        self._secret_key = secret_key
        self._key = jwk.construct(secret_key, ALGORITHM)
        self.issuer = issuer
        self.leeway_seconds = leeway_seconds
        self._clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def issue(self, subject: str, role: Role | str, ttl_seconds: int) -> str:
        """Encode a signed token for subject/role, valid for ttl_seconds from now."""
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive.")
        issued_at = int(self._clock.now().timestamp())
        payload = {
            "sub": subject,
            "role": Role(role).value,
            "iss": self.issuer,
            "iat": issued_at,
            "exp": issued_at + ttl_seconds,
        }
        return jwt.encode(payload, self._secret_key, algorithm=ALGORITHM)

    # ------------------------------------------------------------------
    # Validate
    # ------------------------------------------------------------------

    def validate(self, token: str) -> Claims:
        """Verify structure, signature and expiry; return the claims.

        Raises:
            MalformedToken:    structure, header, or claims cannot be parsed.
            SignatureMismatch: signature does not match header+payload.
            ExpiredToken:      now is past exp (+ leeway).
        """
        if not isinstance(token, str) or not token.isascii():
            raise MalformedToken()
        segments = token.split(".")
        if len(segments) != 3 or not all(segments):
            raise MalformedToken("Token must have exactly three non-empty segments.")
        header_segment, payload_segment, signature_segment = segments

        header = _decode_segment(header_segment)
        if header.get("alg") != ALGORITHM:
            raise MalformedToken("Unsupported token algorithm.")

        signing_input = f"{header_segment}.{payload_segment}".encode("ascii")
        expected = base64url_encode(self._key.sign(signing_input))
        if not hmac.compare_digest(expected, signature_segment.encode("ascii")):
            raise SignatureMismatch()

        claims = self._parse_claims(_decode_segment(payload_segment))

        now = self._clock.now().timestamp()
        if now > claims.expires_at.timestamp() + self.leeway_seconds:
            raise ExpiredToken()
        return claims

    def _parse_claims(self, payload: dict) -> Claims:
        missing = [name for name in _REQUIRED_CLAIMS if name not in payload]
        if missing:
            raise MalformedToken(f"Token is missing claims: {', '.join(missing)}.")

        subject, role, issuer = payload["sub"], payload["role"], payload["iss"]
        issued_at, expires_at = payload["iat"], payload["exp"]
        if not isinstance(subject, str) or not subject:
            raise MalformedToken("Token subject is invalid.")
        if not isinstance(issuer, str) or issuer != self.issuer:
            raise MalformedToken("Token issuer is not accepted.")
        if not _is_numeric_date(issued_at) or not _is_numeric_date(expires_at):
            raise MalformedToken("Token timestamps are invalid.")
        if expires_at <= issued_at:
            raise MalformedToken("Token expires before it was issued.")
        try:
            parsed_role = Role(role)
        except ValueError as exc:
            raise MalformedToken("Token role is not recognised.") from exc

        return Claims(
            subject=subject,
            role=parsed_role,
            issuer=issuer,
            issued_at=datetime.fromtimestamp(issued_at, tz=timezone.utc),
            expires_at=datetime.fromtimestamp(expires_at, tz=timezone.utc),
        )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _decode_segment(segment: str) -> dict:
    """base64url-decode a segment into a JSON object, or raise MalformedToken."""
    if len(segment) > _MAX_SEGMENT_LENGTH:
        raise MalformedToken("Token segment is too long.")
    try:
        data = json.loads(base64url_decode(segment.encode("ascii")).decode("utf-8"))
    except (ValueError, RecursionError) as exc:
        # binascii.Error, UnicodeDecodeError and JSONDecodeError are all ValueErrors.
        # Deeply nested arrays or objects exhaust the decoder's recursion limit.
        raise MalformedToken() from exc
    if not isinstance(data, dict):
        raise MalformedToken("Token segment is not a JSON object.")
    return data


def _is_numeric_date(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)
