"""
auth/pipeline.py -- Per-request authentication and access control interceptors.

Both classes are plain ``(request, call_next) -> response`` callables, mounted
with Starlette's BaseHTTPMiddleware in api/main.py. They run in a fixed order
on every request, before routing:

    AuthenticationPipeline -> AccessGuard -> route handler

AuthenticationPipeline classifies the request exactly once:

    NoToken        no Authorization: Bearer header. identity=None, continue.
                   Public endpoints rely on this; AccessGuard decides the rest.
    Rejected       a Bearer token that fails TokenCodec.validate(). 401 is
                   returned here and nothing downstream runs.
    Authenticated  request.state.identity = Identity(...) for this request only.

No session store is consulted at any point -- the token, the secret inside
the codec and the clock are the whole story.

Layer rule: may import fastapi/starlette (this is the HTTP seam of auth/),
never api/.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from fastapi import Request
from fastapi.responses import JSONResponse, Response

from auth.errors import TokenError
from auth.models import Identity
from auth.policy import AccessPolicy, DenyReason
from auth.tokens import TokenCodec

logger = logging.getLogger("tokengate.auth")

CallNext = Callable[[Request], Awaitable[Response]]

_BEARER_PREFIX = "bearer"


def extract_bearer(request: Request) -> str | None:
    """Return the Bearer credential, "" for an empty one, None if absent.

    Non-Bearer schemes (Basic, Digest, ...) count as absent.
    """
    header = request.headers.get("Authorization")
    if not header:
        return None
    scheme, _, credential = header.strip().partition(" ")
    if scheme.lower() != _BEARER_PREFIX:
        return None
    return credential.strip()


def _unauthorized(code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=401,
        content={"error": {"code": code, "message": message, "detail": None}},
        headers={"WWW-Authenticate": "Bearer"},
    )


class AuthenticationPipeline:
    """Extract and validate the Bearer token; attach the identity to the request.

    The codec is looked up on app.state at call time so the lifespan (or a
    test) decides which secret and clock are in force.
    """

    async def __call__(self, request: Request, call_next: CallNext) -> Response:
        request.state.identity = None
        token = extract_bearer(request)
        if token is None:
            return await call_next(request)

        codec: TokenCodec = request.app.state.token_codec
        try:
            claims = codec.validate(token)
        except TokenError as exc:
            logger.info(
                "Rejected token on %s %s: %s (client=%s)",
                request.method,
                request.url.path,
                exc.code,
                request.client.host if request.client else "unknown",
            )
            return _unauthorized(exc.code, exc.message)

        identity = Identity(
            subject=claims.subject,
            role=claims.role,
            expires_at=claims.expires_at,
            client_host=request.client.host if request.client else None,
        )
        request.state.identity = identity
        logger.debug(
            "Authenticated %s role=%s from %s", identity.subject, identity.role.value, identity.client_host
        )
        return await call_next(request)


class AccessGuard:
    """Apply AccessPolicy to the identity the pipeline established."""

    def __init__(self, policy: AccessPolicy) -> None:
        self.policy = policy

    async def __call__(self, request: Request, call_next: CallNext) -> Response:
        identity: Identity | None = getattr(request.state, "identity", None)
        decision = self.policy.decide(request.url.path, request.method, identity)
        if decision.allowed:
            return await call_next(request)
        if decision.reason is DenyReason.UNAUTHENTICATED:
            return _unauthorized("unauthorized", "Authentication required.")
        logger.info(
            "Forbidden %s %s for %s role=%s",
            request.method,
            request.url.path,
            identity.subject if identity else None,
            identity.role.value if identity else None,
        )
        return JSONResponse(
            status_code=403,
            content={
                "error": {
                    "code": "forbidden",
                    "message": "You do not have access to this resource.",
                    "detail": None,
                }
            },
        )
