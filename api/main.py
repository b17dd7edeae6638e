"""
api/main.py -- FastAPI application entry point for the job board authorization API.

Install deps:  pip install -e .
Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces rate limits from api.limiter

Per-request order after routing:
  rate limit (login/register) -> guard_request (gateway + enforcer) -> handler

guard_request is an application-level dependency, so every APIRoute runs it
without each handler having to remember. Route capabilities live in
api/policies.py.

Lifespan handles startup (store, seed data, revocation registry, lockout
policy, cleanup task) and shutdown (cancel task, close DB) symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress
from datetime import timedelta

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter, register_exempt_routes
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.policies import build_route_policies, undeclared_routes
from api.routes.v1.admin import router as admin_router
from api.routes.v1.auth import router as auth_router
from auth.dependencies import guard_request
from auth.errors import AuthError, RateLimited, StoreError
from auth.lockout import LockoutPolicy
from auth.revocation import TokenRevocationRegistry
from auth.store import CredentialStore
from core.config import get_settings

__version__ = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("jobboard.api")
task_logger = logging.getLogger("jobboard.tasks")

# ---------------------------------------------------------------------------
# Background revocation cleanup task
# ---------------------------------------------------------------------------


async def _revocation_cleanup_loop(app: FastAPI, interval_seconds: int) -> None:
    """Delete expired revocation records once per interval (daily by default).

    Runs as a background asyncio task started in lifespan startup. The
    blocking DELETE runs in a worker thread so the event loop keeps serving
    requests. A failed sweep is logged and retried next interval; it never
    kills the loop.

    Shutdown cancels this task. Cancelled while sleeping, it unwinds at once.
    Cancelled mid-sweep, it first waits for the worker thread to finish so
    lifespan never disposes the engine under a running DELETE.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        sweep = asyncio.ensure_future(asyncio.to_thread(app.state.revocations.cleanup_expired))
        try:
            removed = await asyncio.shield(sweep)
        except asyncio.CancelledError:
            await asyncio.wait([sweep])
            raise
        except Exception:
            task_logger.exception("Revoked-token cleanup failed")
            continue
        task_logger.info("Revoked-token cleanup removed %d expired records", removed)


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. Credential store -- creates tables; everything else shares its engine.
      2. Seed data -- default permissions and system roles must exist before
         the first registration asks for the default role.
      3. Revocation registry and lockout policy -- thin wrappers over the store.
      4. Cleanup task last -- references app.state.revocations.
    """
    settings = get_settings()
    logger.info("Job board authorization API starting up")
    app.state.user_store = CredentialStore(settings.database_url)
    app.state.user_store.seed_defaults()
    app.state.revocations = TokenRevocationRegistry(app.state.user_store.engine)
    app.state.lockout = LockoutPolicy(
        app.state.user_store,
        threshold=settings.password_max_attempts,
        duration=timedelta(minutes=settings.auth_lockout_minutes),
    )
    logger.info(
        "Auth initialized (lockout after %d failures for %d min, auth limit %s)",
        settings.password_max_attempts,
        settings.auth_lockout_minutes,
        settings.auth_rate_limit,
    )
    app.state.cleanup_task = asyncio.create_task(
        _revocation_cleanup_loop(app, settings.token_cleanup_interval_seconds)
    )

    yield

    # Wait for a sweep already running in its worker thread before disposing the engine.
    app.state.cleanup_task.cancel()
    with suppress(asyncio.CancelledError):
        await app.state.cleanup_task
    app.state.user_store.close()
    logger.info("Job board authorization API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Job Board Authorization API",
    description="Bearer authentication, role-based permissions, token revocation and account lockout.",
    version=__version__,
    lifespan=lifespan,
    # Every APIRoute is guarded. Docs routes are plain Starlette routes and are
    # not affected; they are also exempt from rate limiting.
    dependencies=[Depends(guard_request)],
    docs_url="/api-docs",
    redoc_url="/redoc",
)

# Route capability table, read by guard_request on every request.
app.state.route_policies = build_route_policies()

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=["localhost", "127.0.0.1", "*.localhost"],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost", "http://localhost:3000", "http://127.0.0.1"],
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# Attach the shared limiter to app.state so SlowAPIMiddleware can locate it.
# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Request logging middleware
#
# Pattern: Interceptor / Chain of Responsibility. We capture wall-clock time
# before and after call_next so we can report latency on every response.
# The Authorization header is never logged.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(admin_router, prefix="/api/v1", tags=["Administration"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error_response(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Map authorization outcomes to 401/403/429.

    401 responses carry WWW-Authenticate: Bearer so clients know to (re)send
    a bearer credential.
    """
    response = _error_response(exc.status_code, exc.code, exc.message, exc.detail)
    if exc.status_code == 401:
        response.headers["WWW-Authenticate"] = "Bearer"
    return response


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    """Map store domain errors (not found, conflict, system role, weak password)."""
    return _error_response(exc.status_code, exc.code, exc.message)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    Retry-After tells clients exactly how many seconds to wait before retrying.
    """
    retry_after = int(getattr(exc, "retry_after", None) or get_settings().auth_throttle_ttl)
    logger.warning("Rate limit exceeded on %s %s", request.method, request.url.path)
    response = _error_response(429, RateLimited.code, RateLimited.message, str(exc.detail))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return _error_response(422, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Route handlers raise HTTPException with detail={"code": ..., "message": ...}.
    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it -- str(dict) produces a Python repr,
    not JSON.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    A store that cannot be reached lands here: "could not verify" is a 500,
    never a 401/403. The raw exception is written to the log only, never to
    the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. Public and exempt from rate
# limiting -- health checks from load balancers must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health() -> HealthResponse:
    """Return API liveness and current version."""
    return HealthResponse(version=__version__)


register_exempt_routes(app)

_undeclared = undeclared_routes(app.routes, app.state.route_policies)
if _undeclared:
    logger.warning("Routes without a capability declaration (authenticated only): %s", _undeclared)
