from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import abort, g

from app.bdgenai.models import User

ADMIN_ROLE = "admin"
USER_ROLE = "user"


def user_has_permission(user: User | None, permission_key: str) -> bool:
    if not user or not user.is_active:
        return False
    for role in user.roles:
        for perm in role.permissions:
            if perm.key == permission_key:
                return True
    return False


def is_admin(user: User | None) -> bool:
    if not user or not user.is_active:
        return False
    return any(role.key == ADMIN_ROLE for role in user.roles)


def current_user() -> User:
    """Return the signed-in user; only call behind require_login/require_permission."""
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def require_login(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        user: User | None = getattr(g, "current_user", None)
        if not user or not user.is_active:
            abort(401, description="Unauthorized")
        return fn(*args, **kwargs)

    return wrapped


def require_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            # Unauthenticated -> 401
            if not user or not user.is_active:
                abort(401, description="Unauthorized")
            # Authenticated but unauthorized -> 403
            if not user_has_permission(user, permission_key):
                g.missing_permission = permission_key
                abort(403, description="Forbidden")
            return fn(*args, **kwargs)

        return wrapped

    return decorator
