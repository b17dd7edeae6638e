"""
api/policies.py -- Capability declarations for every API route.

One place to read who may call what. Keys are FastAPI route names (the
handler function names). guard_request() consults the registry built here.

Routes missing from this table are still protected: they require a valid
credential and no particular permission. api/main.py logs a warning at
startup for any API route left undeclared.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator

from fastapi.routing import APIRoute
from starlette.routing import BaseRoute

from auth.policy import RoutePolicyRegistry

PUBLIC_ROUTES: tuple[str, ...] = (
    "health",
    "login",
    "register",
)

# Authenticated, no permission beyond a valid credential.
AUTHENTICATED_ROUTES: tuple[str, ...] = (
    "me",
    "logout",
    "change_password",
)

PROTECTED_ROUTES: dict[str, tuple[str, ...]] = {
    "list_permissions": ("permissions:read",),
    "create_permission": ("permissions:create",),
    "get_permission": ("permissions:read",),
    "update_permission": ("permissions:update",),
    "delete_permission": ("permissions:delete",),
    "list_roles": ("roles:read",),
    "get_role": ("roles:view",),
    "create_role": ("roles:create",),
    "update_role": ("roles:update",),
    "delete_role": ("roles:delete",),
    "set_role_permissions": ("roles:update",),
    "list_users": ("users:read",),
    "create_user": ("users:create",),
    "get_user_permissions": ("users:view",),
    "update_user": ("users:update",),
    "set_user_roles": ("users:assign-roles",),
    "set_user_permissions": ("users:assign-roles",),
    "unlock_user": ("users:update",),
    "delete_user": ("users:delete",),
    "revoke_token": ("tokens:revoke",),
}


def iter_routes(routes: Iterable[BaseRoute]) -> Iterator[BaseRoute]:
    """Yield every leaf route, descending into mounts and included routers.

    Depending on the FastAPI/Starlette release, include_router() either copies
    routes onto the app or leaves a wrapper holding the sub-router. Walking
    only the top level would miss every route of an included router.
    """
    for route in routes:
        nested = getattr(route, "routes", None)
        if nested is None:
            nested = getattr(getattr(route, "router", None), "routes", None)
        if nested is not None and not isinstance(route, APIRoute):
            yield from iter_routes(nested)
        else:
            yield route


def iter_api_routes(routes: Iterable[BaseRoute]) -> Iterator[APIRoute]:
    """Yield every APIRoute reachable from `routes`. Docs routes are not APIRoutes."""
    for route in iter_routes(routes):
        if isinstance(route, APIRoute):
            yield route


def undeclared_routes(routes: Iterable[BaseRoute], policies: RoutePolicyRegistry) -> list[str]:
    """Names of API routes with no entry in `policies`."""
    return [r.name for r in iter_api_routes(routes) if r.name not in policies]


def build_route_policies() -> RoutePolicyRegistry:
    policies = RoutePolicyRegistry()
    policies.public(*PUBLIC_ROUTES)
    for name in AUTHENTICATED_ROUTES:
        policies.require(name)
    for name, codes in PROTECTED_ROUTES.items():
        policies.require(name, *codes)
    return policies
