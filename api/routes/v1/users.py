"""
api/routes/v1/users.py -- Authenticated account endpoints.

Routes:
  GET /api/v1/users/me      -- profile of the token's subject (requires auth)
  GET /api/v1/admin/users   -- list every account (ADMIN only)

AccessGuard already enforces both requirements by path prefix; the Depends()
on each handler states the same requirement at the route.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import UserResponse
from auth.dependencies import get_identity, require_role
from auth.models import Identity, Role

router = APIRouter()


@router.get("/users/me", response_model=UserResponse)
def me(request: Request, identity: Identity = Depends(get_identity)) -> UserResponse:
    """Return the current user's profile."""
    profile = request.app.state.credentials.profile(identity.subject)
    return UserResponse.from_profile(profile)


@router.get("/admin/users", response_model=list[UserResponse])
def list_users(request: Request, identity: Identity = Depends(require_role(Role.ADMIN))) -> list[UserResponse]:
    """List all accounts. Admin only."""
    return [UserResponse.from_profile(p) for p in request.app.state.credentials.list_profiles()]
