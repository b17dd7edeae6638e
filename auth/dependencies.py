"""
auth/dependencies.py -- FastAPI Depends() helpers for request authorization.

guard_request() is installed as an application-level dependency, so it runs
for every API route after routing and before the handler:

  1. Look up the matched route's RoutePolicy by route name.
  2. Public route -> done. No credential is read, so a public route can
     never answer 401 or 403.
  3. Otherwise run the gateway (401 on any credential problem) and attach
     the fresh Principal to request.state.principal.
  4. Enforce the route's required permissions (403 on any missing code).

Handlers that need the caller use get_principal() instead of re-reading
headers.

Layer rule: no imports from api/.
  auth/dependencies.py may import from fastapi (for Depends/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

import logging

from fastapi import Request

from auth.errors import AuthError, MissingOrMalformedCredential
from auth.gateway import authenticate_request
from auth.models import Principal
from auth.permissions import enforce_permissions

logger = logging.getLogger("jobboard.auth")


def guard_request(request: Request) -> None:
    """Authenticate and authorize the request according to its route policy."""
    request.state.principal = None
    route = request.scope.get("route")
    route_name = getattr(route, "name", None)
    policy = request.app.state.route_policies.get(route_name)
    if policy.public:
        return
    try:
        principal, token, claims = authenticate_request(
            request.headers.get("Authorization"),
            request.app.state.user_store,
            request.app.state.revocations,
        )
        request.state.principal = principal
        request.state.token = token
        request.state.token_claims = claims
        enforce_permissions(policy.required_permissions, principal)
    except AuthError as exc:
        logger.warning(
            "Denied %s %s (route=%s): %s",
            request.method,
            request.url.path,
            route_name,
            exc.code,
        )
        raise


def get_principal(request: Request) -> Principal:
    """Return the Principal attached by guard_request().

    Use as a FastAPI dependency on protected routes:
        @router.get("/me")
        def me(principal: Principal = Depends(get_principal)): ...
    """
    principal = getattr(request.state, "principal", None)
    if principal is None:
        raise MissingOrMalformedCredential()
    return principal
