"""
auth/dependencies.py -- FastAPI Depends() helpers for the request identity.

The AuthenticationPipeline middleware has already validated any Bearer token
and stored the result on request.state.identity by the time a route runs.
These helpers only read that value; they never re-validate tokens.

get_identity() is the hard variant: HTTP 401 if the request is anonymous.
require_role() wraps it and raises HTTP 403 on a role mismatch.

AccessGuard enforces the same rules by path prefix. The dependencies make
the requirement explicit on the handler as well, so a route moved outside
a protected prefix does not silently become public.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import HTTPException, Request

from auth.models import Identity, Role
from auth.policy import role_grants


def try_get_identity(request: Request) -> Identity | None:
    """Return the request's identity, or None if unauthenticated."""
    return getattr(request.state, "identity", None)


def get_identity(request: Request) -> Identity:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(identity: Identity = Depends(get_identity)): ...
    """
    identity = try_get_identity(request)
    if identity is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
            headers={"WWW-Authenticate": "Bearer"},
        )
    return identity


def require_role(role: Role) -> Callable[[Request], Identity]:
    """Build a dependency that requires the given role (HTTP 403 otherwise).

        @router.get("/admin/users")
        async def route(identity: Identity = Depends(require_role(Role.ADMIN))): ...
    """

    def dependency(request: Request) -> Identity:
        identity = get_identity(request)
        if not role_grants(identity.role, role):
            raise HTTPException(
                status_code=403,
                detail={"code": "forbidden", "message": f"{role.value} role required."},
            )
        return identity

    return dependency
