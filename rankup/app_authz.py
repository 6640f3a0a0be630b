"""Authorization helpers.

Decorators raise SessionError (401) / AuthzError (403); the central handlers
in `errors` turn them into problem+json.
"""

from __future__ import annotations

from collections.abc import Callable
from functools import wraps
from typing import ParamSpec, TypeVar

from .app_sessions import SessionData, require_session
from .roles import ADMIN_ROLES, Role, has_permission, is_admin, normalize

P = ParamSpec("P")
R = TypeVar("R")


class AuthzError(Exception):
    """Signals an authorization (403) failure."""

    required: str | None

    def __init__(self, message: str = "forbidden", required: str | None = None):
        super().__init__(message)
        self.required = required


def require_login(fn: Callable[P, R]) -> Callable[P, R]:
    @wraps(fn)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        require_session()
        return fn(*args, **kwargs)

    return wrapper


def require_roles(*roles: Role) -> Callable[[Callable[P, R]], Callable[P, R]]:
    def decorator(fn: Callable[P, R]) -> Callable[P, R]:
        @wraps(fn)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            sess = require_session()
            if normalize(sess["role"]) not in roles:
                raise AuthzError("forbidden", required=roles[0] if roles else None)
            return fn(*args, **kwargs)

        return wrapper

    return decorator


def require_permission(permission: str) -> Callable[[Callable[P, R]], Callable[P, R]]:
    def decorator(fn: Callable[P, R]) -> Callable[P, R]:
        @wraps(fn)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            sess = require_session()
            if not has_permission(sess["role"], permission):
                raise AuthzError("permission_denied", required=permission)
            return fn(*args, **kwargs)

        return wrapper

    return decorator


require_admin = require_roles(*ADMIN_ROLES)


def ensure_owner_or_admin(owner_id: int | None, sess: SessionData) -> None:
    if owner_id != sess["user_id"] and not is_admin(sess["role"]):
        raise AuthzError("not_owner", required="admin")


__all__ = [
    "AuthzError",
    "require_login",
    "require_roles",
    "require_permission",
    "require_admin",
    "ensure_owner_or_admin",
]
