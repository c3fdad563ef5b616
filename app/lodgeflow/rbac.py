from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import abort, g, redirect, request, url_for

from app.lodgeflow.models import Permission, Role, User

ROLES = ("admin", "staff", "guest", "user")
ROLE_NAMES = {"admin": "Administrator", "staff": "Staff", "guest": "Guest", "user": "User"}

# Permission catalogue: "resource:action" or "resource:action:own".
ALL_PERMISSIONS: tuple[tuple[str, str], ...] = (
    ("dashboard:read", "Dashboard: view"),
    ("permissions:read", "Permissions: view"),
    ("permissions:update", "Permissions: update"),
    ("user:read", "Users: view"),
    ("user:create", "Users: create"),
    ("user:update", "Users: update"),
    ("user:delete", "Users: delete"),
    ("user:update:own", "Users: update own profile"),
    ("listing:read", "Listings: view"),
    ("listing:create", "Listings: create"),
    ("listing:update", "Listings: update"),
    ("listing:delete", "Listings: delete"),
    ("listing:merge", "Listings: merge"),
    ("booking:read", "Bookings: view all"),
    ("booking:create", "Bookings: create for anyone"),
    ("booking:update", "Bookings: update any"),
    ("booking:confirm", "Bookings: confirm"),
    ("booking:cancel", "Bookings: cancel any"),
    ("booking:read:own", "Bookings: view own"),
    ("booking:create:own", "Bookings: create own"),
    ("booking:update:own", "Bookings: update own"),
    ("booking:cancel:own", "Bookings: cancel own"),
    ("review:create:own", "Reviews: write own"),
    ("review:approve", "Reviews: approve"),
    ("review:delete", "Reviews: delete"),
    ("resource:read", "Resources: view"),
    ("resource:create", "Resources: create"),
    ("resource:update", "Resources: update"),
    ("resource:delete", "Resources: delete"),
    ("location:read", "Locations: view"),
    ("location:create", "Locations: create"),
    ("location:update", "Locations: update"),
    ("location:delete", "Locations: delete"),
    ("catalog:read", "Facilities/rules/groups: view"),
    ("catalog:update", "Facilities/rules/groups: manage"),
    ("report:read", "Reports: view"),
    ("audit:read", "Audit trail: view"),
)

DEFAULT_ROLE_PERMISSIONS: dict[str, tuple[str, ...]] = {
    "admin": ("*",),
    "staff": (
        "dashboard:read",
        "user:read",
        "user:update:own",
        "listing:read",
        "listing:update",
        "booking:*",
        "review:approve",
        "resource:read",
        "resource:update",
        "location:read",
        "catalog:read",
        "report:read",
    ),
    "guest": (
        "user:update:own",
        "booking:read:own",
        "booking:create:own",
        "booking:update:own",
        "booking:cancel:own",
        "review:create:own",
    ),
    "user": (
        "user:update:own",
        "booking:read:own",
        "booking:create:own",
        "booking:cancel:own",
    ),
}


def expand_permission_patterns(patterns) -> list[str]:
    """Resolve "*" and "resource:*" against the permission catalogue."""
    keys = [k for k, _ in ALL_PERMISSIONS]
    out: list[str] = []
    for pattern in patterns:
        if pattern == "*":
            matched = keys
        elif pattern.endswith(":*"):
            prefix = pattern[:-1]
            matched = [k for k in keys if k.startswith(prefix)]
        else:
            matched = [pattern] if pattern in keys else []
        out.extend(k for k in matched if k not in out)
    return out


def seed_roles_and_permissions(s) -> dict[str, Role]:
    """
    Create missing permissions and roles. Idempotent.

    A role that already exists keeps whatever permissions an admin gave it; only new
    roles get the defaults.
    """
    perms: dict[str, Permission] = {p.key: p for p in s.query(Permission).all()}
    for key, name in ALL_PERMISSIONS:
        if key not in perms:
            perms[key] = Permission(key=key, name=name)
            s.add(perms[key])

    roles: dict[str, Role] = {r.key: r for r in s.query(Role).all()}
    for key in ROLES:
        if key in roles:
            continue
        role = Role(key=key, name=ROLE_NAMES[key])
        role.permissions = [perms[k] for k in expand_permission_patterns(DEFAULT_ROLE_PERMISSIONS.get(key, ()))]
        s.add(role)
        roles[key] = role
    s.flush()
    return roles


def user_has_permission(user: User | None, permission_key: str, owner_id: int | None = None) -> bool:
    if not user or not user.is_active or not user.role:
        return False
    if user.role.key == "admin":
        return True

    granted = user.role.permission_keys
    if "*" in granted:
        return True

    if permission_key.endswith(":own") and permission_key in granted:
        # Without an owner (e.g. create:own) the caller must set the owner itself.
        if owner_id is not None:
            return user.id == owner_id
        return True

    parts = permission_key.split(":")
    resource, action = parts[0], (parts[1] if len(parts) > 1 else "")
    return f"{resource}:{action}" in granted or f"{resource}:*" in granted


def user_can(user: User | None, permission_key: str, owner_id: int | None = None) -> bool:
    """Either the general permission or its ':own' variant for the given owner."""
    if user_has_permission(user, permission_key):
        return True
    return user_has_permission(user, f"{permission_key}:own", owner_id=owner_id) if owner_id is not None else False


def _login_redirect():
    nxt = request.full_path or request.path
    # Avoid trailing '?' from full_path when there is no query string.
    if nxt.endswith("?"):
        nxt = nxt[:-1]
    return redirect(url_for("auth.login_get", next=nxt))


def require_login(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        user: User | None = getattr(g, "current_user", None)
        if not user or not user.is_active:
            return _login_redirect()
        return fn(*args, **kwargs)

    return wrapped


def require_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            # Unauthenticated -> redirect to login.
            if not user or not user.is_active:
                return _login_redirect()
            # Authenticated but unauthorized -> 403
            if not user_has_permission(user, permission_key):
                g.missing_permission = permission_key
                abort(403)
            return fn(*args, **kwargs)

        return wrapped

    return decorator


def require_role(*roles: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Gate a page by role. Other signed-in roles get a 404 so the page stays hidden."""

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            if not user or not user.is_active:
                return _login_redirect()
            if user.role_key not in roles:
                abort(404)
            return fn(*args, **kwargs)

        return wrapped

    return decorator
