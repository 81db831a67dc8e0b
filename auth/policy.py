"""
auth/policy.py -- AccessPolicy: map (path, method, identity) to allow/deny.

decide() is a pure function of its arguments and the policy's static
configuration -- no I/O, no clock, no mutable state -- so it is safe to share
one instance across all requests.

Prefix matching is segment-aware: "/api/v1/auth" matches "/api/v1/auth" and
"/api/v1/auth/login" but not "/api/v1/authz".

Role checks go through _ROLE_GRANTS, which must have an entry for every Role
member. Adding a role without deciding what it grants fails at import time.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum

from auth.models import Identity, Role

# Which required roles each role satisfies. Exact match: ADMIN does not
# implicitly pass USER-only prefixes.
_ROLE_GRANTS: dict[Role, frozenset[Role]] = {
    Role.ADMIN: frozenset({Role.ADMIN}),
    Role.USER: frozenset({Role.USER}),
}

_missing = set(Role) - set(_ROLE_GRANTS)
if _missing:
    raise RuntimeError(f"No access grants defined for roles: {sorted(r.value for r in _missing)}")


class DenyReason(str, Enum):
    UNAUTHENTICATED = "UNAUTHENTICATED"
    FORBIDDEN = "FORBIDDEN"


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: DenyReason | None = None

    @classmethod
    def allow(cls) -> Decision:
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: DenyReason) -> Decision:
        return cls(allowed=False, reason=reason)


def _normalize(prefix: str) -> str:
    return "/" + prefix.strip("/") if prefix.strip("/") else "/"


def _matches(path: str, prefix: str) -> bool:
    if prefix == "/":
        return True
    return path == prefix or path.startswith(prefix + "/")


def role_grants(role: Role, required: Role) -> bool:
    return required in _ROLE_GRANTS[role]


class AccessPolicy:
    """Static path policy.

    Usage:
        policy = AccessPolicy(["/api/v1/auth"], {"/api/v1/admin": Role.ADMIN})
        policy.decide("/api/v1/admin/users", "GET", identity)
    """

    def __init__(self, public_prefixes: Iterable[str], role_prefixes: Mapping[str, Role] | None = None) -> None:
        self.public_prefixes: tuple[str, ...] = tuple(_normalize(p) for p in public_prefixes)
        # Longest prefix first so the most specific rule wins
        self.role_prefixes: tuple[tuple[str, Role], ...] = tuple(
            sorted(
                ((_normalize(p), Role(r)) for p, r in (role_prefixes or {}).items()),
                key=lambda item: len(item[0]),
                reverse=True,
            )
        )

    def decide(self, path: str, method: str, identity: Identity | None) -> Decision:
        if method.upper() == "OPTIONS":
            # CORS preflight never carries credentials
            return Decision.allow()
        if any(_matches(path, prefix) for prefix in self.public_prefixes):
            return Decision.allow()
        if identity is None:
            return Decision.deny(DenyReason.UNAUTHENTICATED)
        required = self.required_role(path)
        if required is not None and not role_grants(identity.role, required):
            return Decision.deny(DenyReason.FORBIDDEN)
        return Decision.allow()

    def required_role(self, path: str) -> Role | None:
        for prefix, role in self.role_prefixes:
            if _matches(path, prefix):
                return role
        return None
