from collections.abc import Callable
from dataclasses import dataclass
from functools import wraps
from typing import Any

from flask import abort, g, redirect, request, url_for

from app.portal.models import User

STUDENT_ROLE = "student"


@dataclass(frozen=True)
class Principal:
    """Who is asking. Passed explicitly into services instead of reading `g`."""

    user_id: int
    roles: frozenset[str]

    def has_role(self, key: str) -> bool:
        return key in self.roles

    @property
    def is_student(self) -> bool:
        return STUDENT_ROLE in self.roles


def principal_for(user: User | None) -> Principal | None:
    if not user or not user.is_active:
        return None
    return Principal(user_id=user.id, roles=frozenset(r.key for r in (user.roles or [])))


def current_principal() -> Principal | None:
    return principal_for(getattr(g, "current_user", None))


def user_has_permission(user: User | None, permission_key: str) -> bool:
    if not user or not user.is_active:
        return False
    for role in user.roles:
        for perm in role.permissions:
            if perm.key == permission_key:
                return True
    return False


def require_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            # Unauthenticated → redirect to login
            if not user or not user.is_active:
                nxt = request.full_path or request.path
                # Avoid trailing '?' from full_path when there is no query string.
                if nxt.endswith("?"):
                    nxt = nxt[:-1]
                return redirect(url_for("auth.login_get", next=nxt))
            # Authenticated but unauthorized → 403
            if not user_has_permission(user, permission_key):
                g.missing_permission = permission_key
                abort(403)
            return fn(*args, **kwargs)

        return wrapped

    return decorator
