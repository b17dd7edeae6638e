"""
auth/permissions.py -- Effective-permission resolution and enforcement.

resolve_permissions() flattens a user's role/permission graph into a set of
codes. enforce_permissions() checks a route's required codes against it.

Both are pure functions over already-loaded data: no I/O, no caching. The
gateway calls resolve_permissions() on every request, so an administrative
change (deactivating a permission, removing a role) takes effect on the
very next request.

Layer rule: no imports from api/ or fastapi.
"""

from __future__ import annotations

from collections.abc import Iterable

from auth.errors import InsufficientPermission
from auth.models import Principal, User


def resolve_permissions(user: User) -> frozenset[str]:
    """Union of active direct permissions and active permissions of active roles.

    An inactive permission never counts, even while still linked to the user
    or to one of the user's roles. An inactive role contributes nothing.
    """
    codes = {p.code for p in user.permissions if p.is_active}
    for role in user.roles:
        if not role.is_active:
            continue
        codes.update(p.code for p in role.permissions if p.is_active)
    return frozenset(codes)


def enforce_permissions(required: Iterable[str], principal: Principal | None) -> None:
    """Allow iff every required code is held (AND semantics).

    Raises InsufficientPermission naming the missing codes. A missing
    principal is treated as holding nothing, so even an empty requirement
    is refused.
    """
    required = frozenset(required)
    if principal is None:
        raise InsufficientPermission(required)
    missing = required - principal.permissions
    if missing:
        raise InsufficientPermission(missing)
