"""
api/routes/v1/auth.py -- Authentication endpoints.

Routes:
  POST /api/v1/auth/login            -- password login; returns a bearer JWT
  POST /api/v1/auth/register         -- self-registration with the default role
  GET  /api/v1/auth/me               -- current principal and effective permissions
  POST /api/v1/auth/logout           -- revokes the presented token
  POST /api/v1/auth/change-password  -- sets a new password, revokes the presented token

Security:
  [H2] login and register share one rate-limit counter per client (auth_limit).
  [C1] authenticate_user() provides timing equalization -- use it, never inline.
  [M5] Cache-Control: no-store on login responses.
  Logout and change-password revoke the presented token until its own exp, so
  the revocation row can be swept once the token would have died anyway.

Route names (the function names) are the keys used in api/policies.py.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import auth_limit
from api.models import (
    ChangePasswordRequest,
    LoginRequest,
    LoginResponse,
    MeResponse,
    MessageResponse,
    RegisterRequest,
    UserResponse,
)
from api.routes.v1.admin import user_to_response
from auth.dependencies import get_principal
from auth.lockout import LockoutPolicy
from auth.models import Principal, User
from auth.revocation import TokenRevocationRegistry
from auth.store import CredentialStore
from auth.tokens import (
    authenticate_user,
    create_access_token,
    hash_password,
    token_expiry,
    validate_password_strength,
    verify_password,
)
from core.config import get_settings

logger = logging.getLogger("jobboard.api")

router = APIRouter()


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/login", response_model=LoginResponse)
@auth_limit  # [H2] must sit BELOW @router so FastAPI registers the rate-limited wrapper
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; return a bearer JWT.

    Uses authenticate_user() which includes timing equalization [C1] and the
    lockout policy. Unknown email and wrong password return the same
    bad_credentials error.
    """
    user_store: CredentialStore = request.app.state.user_store
    lockout: LockoutPolicy = request.app.state.lockout
    user = authenticate_user(user_store, lockout, body.email, body.password)

    settings = get_settings()
    token = create_access_token(user.id, user.email)
    logger.info("User %d logged in", user.id)
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            access_token=token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=settings.token_expire_seconds,
            user_id=user.id,
            email=user.email,
        ).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/auth/register", response_model=UserResponse, status_code=201)
@auth_limit
def register(request: Request, body: RegisterRequest) -> UserResponse:
    """Create an account for the caller. The new user receives the default role."""
    if not get_settings().self_registration_enabled:
        raise HTTPException(
            status_code=403,
            detail={"code": "registration_disabled", "message": "Self-registration is disabled."},
        )
    validate_password_strength(body.password)

    user_store: CredentialStore = request.app.state.user_store
    default_role = user_store.get_default_role()
    role_ids = [default_role.id] if default_role is not None else []
    user_id = user_store.create_user(
        User(
            email=body.email,
            first_name=body.first_name,
            last_name=body.last_name,
            hashed_password=hash_password(body.password),
        ),
        role_ids=role_ids,
    )
    logger.info("User %d registered", user_id)
    return user_to_response(user_store.get_by_id(user_id))


# ---------------------------------------------------------------------------
# Authenticated endpoints (no permission required)
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
def me(request: Request, principal: Principal = Depends(get_principal)) -> MeResponse:
    """Return identity information and effective permissions for the caller."""
    user_store: CredentialStore = request.app.state.user_store
    user = user_store.get_by_id(principal.user_id)
    return MeResponse(
        user_id=principal.user_id,
        email=principal.email,
        first_name=user.first_name if user else "",
        last_name=user.last_name if user else "",
        roles=[r.code for r in user.roles if r.is_active] if user else [],
        permissions=sorted(principal.permissions),
    )


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, principal: Principal = Depends(get_principal)) -> MessageResponse:
    """Revoke the presented token. Any later request with it gets 401 revoked_credential."""
    revocations: TokenRevocationRegistry = request.app.state.revocations
    revocations.revoke(request.state.token, expires_at=token_expiry(request.state.token_claims))
    logger.info("User %d logged out", principal.user_id)
    return MessageResponse(message="Logged out.")


@router.post("/auth/change-password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    principal: Principal = Depends(get_principal),
) -> MessageResponse:
    """Replace the caller's password after re-checking the current one.

    The presented token is revoked; the caller must log in again.
    """
    user_store: CredentialStore = request.app.state.user_store
    user = user_store.get_by_id(principal.user_id)
    if user is None or user.hashed_password is None or not verify_password(body.current_password, user.hashed_password):
        raise HTTPException(
            status_code=400,
            detail={"code": "invalid_current_password", "message": "Current password is incorrect."},
        )
    validate_password_strength(body.new_password)
    user.set_password(body.new_password)
    user_store.update_user(user.id, hashed_password=user.hashed_password)

    revocations: TokenRevocationRegistry = request.app.state.revocations
    revocations.revoke(request.state.token, expires_at=token_expiry(request.state.token_claims))
    logger.info("User %d changed password", user.id)
    return MessageResponse(message="Password changed. Please log in again.")
