"""Role hierarchy and permission table.

Role: ordered from least to most privileged. `ROLE_PERMISSIONS` is cumulative
in spirit but spelled out per role so a grep shows exactly who can do what.
"""

from __future__ import annotations

from typing import Literal, cast

Role = Literal["guest", "user", "pro", "premium", "admin", "super_admin"]

ROLE_ORDER: tuple[Role, ...] = ("guest", "user", "pro", "premium", "admin", "super_admin")
ADMIN_ROLES: tuple[Role, ...] = ("admin", "super_admin")

_BASE_USER = (
    "stock:read",
    "news:read",
    "post:read",
    "post:create",
    "post:update:own",
    "post:delete:own",
    "comment:create",
    "comment:update:own",
    "comment:delete:own",
    "like:create",
    "bookmark:manage",
    "report:create",
    "profile:manage",
)
_PRO = _BASE_USER + ("stock:realtime", "export:basic", "chart:advanced")
_PREMIUM = _PRO + ("premium:export", "premium:api", "ai:analysis")
_ADMIN = _PREMIUM + (
    "post:update:any",
    "post:delete:any",
    "comment:update:any",
    "comment:delete:any",
    "admin:users",
    "admin:posts",
    "admin:reports",
    "admin:stats",
    "admin:flags",
    "admin:webhooks",
)

ROLE_PERMISSIONS: dict[Role, frozenset[str]] = {
    "guest": frozenset({"stock:read", "news:read", "post:read"}),
    "user": frozenset(_BASE_USER),
    "pro": frozenset(_PRO),
    "premium": frozenset(_PREMIUM),
    "admin": frozenset(_ADMIN),
    "super_admin": frozenset(_ADMIN + ("admin:roles", "admin:system")),
}


def normalize(role: str | None) -> Role:
    """Unknown or missing roles degrade to guest."""
    if role in ROLE_ORDER:
        return cast(Role, role)
    return "guest"


def has_permission(role: str | None, permission: str) -> bool:
    return permission in ROLE_PERMISSIONS[normalize(role)]


def role_at_least(role: str | None, minimum: Role) -> bool:
    return ROLE_ORDER.index(normalize(role)) >= ROLE_ORDER.index(minimum)


def is_admin(role: str | None) -> bool:
    return role_at_least(role, "admin")


__all__ = [
    "Role",
    "ROLE_ORDER",
    "ADMIN_ROLES",
    "ROLE_PERMISSIONS",
    "normalize",
    "has_permission",
    "role_at_least",
    "is_admin",
]
