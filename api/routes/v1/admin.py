"""
api/routes/v1/admin.py -- Permission, role, user and token administration.

Routes (required permission in brackets, declared in api/policies.py):
  GET    /api/v1/permissions                 [permissions:read]
  POST   /api/v1/permissions                 [permissions:create]
  GET    /api/v1/permissions/{id}            [permissions:read]
  PATCH  /api/v1/permissions/{id}            [permissions:update]
  DELETE /api/v1/permissions/{id}            [permissions:delete]
  GET    /api/v1/roles                       [roles:read]
  GET    /api/v1/roles/{id}                  [roles:view]
  POST   /api/v1/roles                       [roles:create]
  PATCH  /api/v1/roles/{id}                  [roles:update]
  DELETE /api/v1/roles/{id}                  [roles:delete]
  PUT    /api/v1/roles/{id}/permissions      [roles:update]
  GET    /api/v1/users                       [users:read]
  POST   /api/v1/users                       [users:create]
  GET    /api/v1/users/{id}/permissions      [users:view]
  PATCH  /api/v1/users/{id}                  [users:update]
  PUT    /api/v1/users/{id}/roles            [users:assign-roles]
  PUT    /api/v1/users/{id}/permissions      [users:assign-roles]
  POST   /api/v1/users/{id}/unlock           [users:update]
  DELETE /api/v1/users/{id}                  [users:delete]
  POST   /api/v1/tokens/revoke               [tokens:revoke]

No handler here checks permissions itself: guard_request has already enforced
the route's declaration before the handler runs. Store domain errors
(NotFoundError, ConflictError, SystemRoleError, WeakPasswordError) propagate
to the StoreError handler in api/main.py.

Security:
  [M4] PATCH and DELETE /users/{id} block self-deactivation and self-deletion.
  [H3] Direct permission grants need users:assign-roles, like role grants.
       users:update alone can never widen a permission set, including the
       caller's own.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from api.models import (
    CodeList,
    PermissionCreate,
    PermissionPatch,
    PermissionResponse,
    RoleCreate,
    RolePatch,
    RoleResponse,
    TokenRevokeRequest,
    UserCreate,
    UserPatch,
    UserPermissionsResponse,
    UserResponse,
)
from auth.dependencies import get_principal
from auth.errors import NotFoundError
from auth.lockout import LockoutPolicy
from auth.models import Permission, Principal, Role, User
from auth.permissions import resolve_permissions
from auth.revocation import TokenRevocationRegistry
from auth.store import CredentialStore
from auth.tokens import hash_password, unverified_expiry, validate_password_strength

logger = logging.getLogger("jobboard.api")

router = APIRouter()


# ---------------------------------------------------------------------------
# Permissions
# ---------------------------------------------------------------------------


@router.get("/permissions", response_model=list[PermissionResponse])
def list_permissions(request: Request) -> list[PermissionResponse]:
    user_store: CredentialStore = request.app.state.user_store
    return [_permission_to_response(p) for p in user_store.list_permissions()]


@router.post("/permissions", response_model=PermissionResponse, status_code=201)
def create_permission(request: Request, body: PermissionCreate) -> PermissionResponse:
    user_store: CredentialStore = request.app.state.user_store
    permission_id = user_store.create_permission(
        Permission(code=body.code, name=body.name, description=body.description, is_active=body.is_active)
    )
    return _permission_to_response(user_store.get_permission(permission_id))


@router.get("/permissions/{permission_id}", response_model=PermissionResponse)
def get_permission(request: Request, permission_id: int) -> PermissionResponse:
    user_store: CredentialStore = request.app.state.user_store
    permission = user_store.get_permission(permission_id)
    if permission is None:
        raise NotFoundError(f"Permission {permission_id} not found.")
    return _permission_to_response(permission)


@router.patch("/permissions/{permission_id}", response_model=PermissionResponse)
def update_permission(request: Request, permission_id: int, body: PermissionPatch) -> PermissionResponse:
    """Rename, describe or (de)activate a permission.

    Deactivation takes effect on the next request of every holder: the
    gateway resolves permissions afresh each time and skips inactive ones.
    """
    user_store: CredentialStore = request.app.state.user_store
    updates = body.model_dump(exclude_none=True)
    if not updates:
        raise _no_changes()
    if not user_store.update_permission(permission_id, **updates):
        raise NotFoundError(f"Permission {permission_id} not found.")
    logger.info("Permission %d updated: %s", permission_id, sorted(updates))
    return _permission_to_response(user_store.get_permission(permission_id))


@router.delete("/permissions/{permission_id}", status_code=204)
def delete_permission(request: Request, permission_id: int) -> Response:
    """Delete a permission. Every role and user holding it loses it on their next request."""
    user_store: CredentialStore = request.app.state.user_store
    user_store.delete_permission(permission_id)
    logger.info("Permission %d deleted", permission_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------


@router.get("/roles", response_model=list[RoleResponse])
def list_roles(request: Request) -> list[RoleResponse]:
    user_store: CredentialStore = request.app.state.user_store
    return [_role_to_response(r) for r in user_store.list_roles()]


@router.get("/roles/{role_id}", response_model=RoleResponse)
def get_role(request: Request, role_id: int) -> RoleResponse:
    user_store: CredentialStore = request.app.state.user_store
    role = user_store.get_role(role_id)
    if role is None:
        raise NotFoundError(f"Role {role_id} not found.")
    return _role_to_response(role)


@router.post("/roles", response_model=RoleResponse, status_code=201)
def create_role(request: Request, body: RoleCreate) -> RoleResponse:
    user_store: CredentialStore = request.app.state.user_store
    role_id = user_store.create_role(
        Role(
            code=body.code,
            name=body.name,
            description=body.description,
            is_active=body.is_active,
            is_default=body.is_default,
        ),
        permission_codes=body.permissions,
    )
    return _role_to_response(user_store.get_role(role_id))


@router.patch("/roles/{role_id}", response_model=RoleResponse)
def update_role(request: Request, role_id: int, body: RolePatch) -> RoleResponse:
    user_store: CredentialStore = request.app.state.user_store
    updates = body.model_dump(exclude_none=True)
    if not updates:
        raise _no_changes()
    user_store.update_role(role_id, **updates)
    logger.info("Role %d updated: %s", role_id, sorted(updates))
    return _role_to_response(user_store.get_role(role_id))


@router.delete("/roles/{role_id}", status_code=204)
def delete_role(request: Request, role_id: int) -> Response:
    user_store: CredentialStore = request.app.state.user_store
    user_store.delete_role(role_id)
    logger.info("Role %d deleted", role_id)
    return Response(status_code=204)


@router.put("/roles/{role_id}/permissions", response_model=RoleResponse)
def set_role_permissions(request: Request, role_id: int, body: CodeList) -> RoleResponse:
    """Replace the role's permissions with exactly the given codes."""
    user_store: CredentialStore = request.app.state.user_store
    user_store.set_role_permissions(role_id, body.codes)
    return _role_to_response(user_store.get_role(role_id))


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


@router.get("/users", response_model=list[UserResponse])
def list_users(request: Request) -> list[UserResponse]:
    user_store: CredentialStore = request.app.state.user_store
    return [user_to_response(u) for u in user_store.list_users()]


@router.post("/users", response_model=UserResponse, status_code=201)
def create_user(request: Request, body: UserCreate) -> UserResponse:
    """Create a user. Without explicit roles the default role is assigned."""
    user_store: CredentialStore = request.app.state.user_store
    validate_password_strength(body.password)
    if body.roles:
        role_ids = _role_ids_for_codes(user_store, body.roles)
    else:
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
    logger.info("User %d created", user_id)
    return user_to_response(user_store.get_by_id(user_id))


@router.get("/users/{user_id}/permissions", response_model=UserPermissionsResponse)
def get_user_permissions(request: Request, user_id: int) -> UserPermissionsResponse:
    user_store: CredentialStore = request.app.state.user_store
    user = _require_user(user_store, user_id)
    return UserPermissionsResponse(
        user_id=user.id,
        effective=sorted(resolve_permissions(user)),
        direct=sorted(p.code for p in user.permissions if p.is_active),
        roles={r.code: sorted(p.code for p in r.permissions if p.is_active) for r in user.roles if r.is_active},
    )


@router.patch("/users/{user_id}", response_model=UserResponse)
def update_user(
    request: Request,
    user_id: int,
    body: UserPatch,
    principal: Principal = Depends(get_principal),
) -> UserResponse:
    """Update a user's active flag or name. [M4] blocks self-deactivation."""
    user_store: CredentialStore = request.app.state.user_store
    _require_user(user_store, user_id)
    updates = body.model_dump(exclude_none=True)
    if not updates:
        raise _no_changes()
    if updates.get("is_active") is False and user_id == principal.user_id:
        raise HTTPException(
            status_code=400,
            detail={"code": "self_deactivation", "message": "You cannot deactivate your own account."},
        )
    user_store.update_user(user_id, **updates)
    logger.info("User %d updated: %s", user_id, sorted(updates))
    return user_to_response(user_store.get_by_id(user_id))


@router.put("/users/{user_id}/roles", response_model=UserResponse)
def set_user_roles(request: Request, user_id: int, body: CodeList) -> UserResponse:
    user_store: CredentialStore = request.app.state.user_store
    user_store.set_user_roles(user_id, _role_ids_for_codes(user_store, body.codes))
    return user_to_response(user_store.get_by_id(user_id))


@router.put("/users/{user_id}/permissions", response_model=UserPermissionsResponse)
def set_user_permissions(request: Request, user_id: int, body: CodeList) -> UserPermissionsResponse:
    user_store: CredentialStore = request.app.state.user_store
    user_store.set_user_permissions(user_id, body.codes)
    return get_user_permissions(request, user_id)


@router.post("/users/{user_id}/unlock", response_model=UserResponse)
def unlock_user(request: Request, user_id: int) -> UserResponse:
    """Clear the failed-attempt counter and any running lockout."""
    lockout: LockoutPolicy = request.app.state.lockout
    if not lockout.unlock(user_id):
        raise NotFoundError(f"User {user_id} not found.")
    return user_to_response(request.app.state.user_store.get_by_id(user_id))


@router.delete("/users/{user_id}", status_code=204)
def delete_user(request: Request, user_id: int, principal: Principal = Depends(get_principal)) -> Response:
    if user_id == principal.user_id:
        raise HTTPException(
            status_code=400,
            detail={"code": "self_deletion", "message": "You cannot delete your own account."},
        )
    user_store: CredentialStore = request.app.state.user_store
    if not user_store.delete_user(user_id):
        raise NotFoundError(f"User {user_id} not found.")
    logger.info("User %d deleted", user_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------


@router.post("/tokens/revoke", status_code=204)
def revoke_token(request: Request, body: TokenRevokeRequest) -> Response:
    """Revoke an arbitrary raw token, e.g. one reported as leaked.

    The token does not need to verify: a token signed with a rotated key can
    still be revoked. Unless `permanent` is set the record lives until the
    token's exp claim; an unparseable token is revoked permanently.
    """
    revocations: TokenRevocationRegistry = request.app.state.revocations
    expires_at = None if body.permanent else unverified_expiry(body.token)
    revocations.revoke(body.token, expires_at=expires_at)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def user_to_response(user: User | None) -> UserResponse:
    if user is None:
        raise HTTPException(
            status_code=500,
            detail={"code": "internal_error", "message": "User not found after write."},
        )
    return UserResponse(
        id=user.id,
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        is_active=user.is_active,
        is_locked=user.is_locked(datetime.now(timezone.utc)),
        roles=[r.code for r in user.roles],
        created_at=user.created_at or "",
        last_login=user.last_login,
    )


def _role_to_response(role: Role | None) -> RoleResponse:
    if role is None:
        raise NotFoundError("Role not found.")
    return RoleResponse(
        id=role.id,
        code=role.code,
        name=role.name,
        description=role.description,
        is_active=role.is_active,
        is_system=role.is_system,
        is_default=role.is_default,
        permissions=[p.code for p in role.permissions],
    )


def _permission_to_response(permission: Permission | None) -> PermissionResponse:
    if permission is None:
        raise NotFoundError("Permission not found.")
    return PermissionResponse(
        id=permission.id,
        code=permission.code,
        name=permission.name,
        description=permission.description,
        is_active=permission.is_active,
        is_default=permission.is_default,
    )


def _require_user(user_store: CredentialStore, user_id: int) -> User:
    user = user_store.get_by_id(user_id)
    if user is None:
        raise NotFoundError(f"User {user_id} not found.")
    return user


def _role_ids_for_codes(user_store: CredentialStore, codes: list[str]) -> list[int]:
    role_ids: list[int] = []
    missing: list[str] = []
    for code in dict.fromkeys(codes):
        role = user_store.get_role_by_code(code)
        if role is None:
            missing.append(code)
        else:
            role_ids.append(role.id)
    if missing:
        raise NotFoundError(f"Unknown role codes: {sorted(missing)}")
    return role_ids


def _no_changes() -> HTTPException:
    return HTTPException(
        status_code=400,
        detail={"code": "no_changes", "message": "No fields to update."},
    )
