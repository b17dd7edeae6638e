"""
api/limiter.py -- Shared slowapi rate limiter instance and exemption list.

Import this in both api/main.py (to mount as middleware) and
api/routes/v1/auth.py (to apply the shared authentication limit).

Using a single shared instance ensures all routes share the same in-memory
counter store. If this were instantiated in each module separately, each
module would get its own isolated counter and rate limits would never trigger.

Two limits apply:
  default_limits   -- every API route, via SlowAPIMiddleware.
  auth_limit       -- login and register share ONE counter per client
                      (scope "auth"), so alternating between the two
                      endpoints does not double the attempt budget.

Exempt paths (health checks, API docs) are never counted. Exemption is by
substring match on the route path, applied once at startup by
register_exempt_routes().
"""

from __future__ import annotations

from fastapi import FastAPI
from slowapi import Limiter
from slowapi.util import get_remote_address

from api.policies import iter_routes
from core.config import get_settings

_settings = get_settings()

RATE_LIMIT_EXEMPT_PATHS: tuple[str, ...] = (
    "/health",
    "/api-docs",
    "/swagger",
    "/docs",
    "/redoc",
    "/openapi.json",
)

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
    default_limits=[_settings.api_rate_limit],
)

# Applied with @auth_limit on POST /auth/login and POST /auth/register.
auth_limit = limiter.shared_limit(_settings.auth_rate_limit, scope="auth")


def is_rate_limit_exempt(path: str) -> bool:
    """True if `path` contains any entry of RATE_LIMIT_EXEMPT_PATHS."""
    return any(fragment in path for fragment in RATE_LIMIT_EXEMPT_PATHS)


def register_exempt_routes(app: FastAPI) -> list[str]:
    """Exempt every route whose path matches the exemption list. Returns the matched paths."""
    exempted: list[str] = []
    for route in iter_routes(app.routes):
        path = getattr(route, "path", "")
        endpoint = getattr(route, "endpoint", None)
        if endpoint is not None and is_rate_limit_exempt(path):
            limiter.exempt(endpoint)
            exempted.append(path)
    return exempted
