"""
API request and response models for the authorization REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
No response model carries a password hash.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# "resource:action", lower-case, e.g. "applications:update" or "users:assign-roles".
PERMISSION_CODE_PATTERN = r"^[a-z][a-z0-9_-]*:[a-z][a-z0-9_-]*$"
ROLE_CODE_PATTERN = r"^[a-z][a-z0-9_-]*$"
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

# ---------------------------------------------------------------------------
# Auth -- request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    # max_length caps bcrypt work per request.
    password: str = Field(min_length=1, max_length=128)


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register.

    Password strength is checked by auth.tokens.validate_password_strength()
    so the same rule applies to registration, admin creation and password
    change, and the failure maps to a 422 weak_password error.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    password: str = Field(min_length=1, max_length=128)
    first_name: str = Field(default="", max_length=255)
    last_name: str = Field(default="", max_length=255)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(min_length=1, max_length=128)
    new_password: str = Field(min_length=1, max_length=128)


# ---------------------------------------------------------------------------
# Auth -- response models
# ---------------------------------------------------------------------------


class LoginResponse(BaseModel):
    """Response for POST /api/v1/auth/login."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user_id: int
    email: str


class MeResponse(BaseModel):
    """Response for GET /api/v1/auth/me: identity plus effective permissions."""

    model_config = ConfigDict(frozen=True)

    user_id: int
    email: str
    first_name: str
    last_name: str
    roles: list[str]
    permissions: list[str]


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


# ---------------------------------------------------------------------------
# Administration -- permissions
# ---------------------------------------------------------------------------


class PermissionCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    code: str = Field(pattern=PERMISSION_CODE_PATTERN, max_length=255)
    name: str = Field(default="", max_length=255)
    description: Optional[str] = None
    is_active: bool = True


class PermissionPatch(BaseModel):
    """Partial update. Deactivating keeps links; the permission simply stops counting."""

    name: Optional[str] = Field(default=None, max_length=255)
    description: Optional[str] = None
    is_active: Optional[bool] = None


class PermissionResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    code: str
    name: str
    description: Optional[str] = None
    is_active: bool
    is_default: bool


# ---------------------------------------------------------------------------
# Administration -- roles
# ---------------------------------------------------------------------------


class RoleCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    code: str = Field(pattern=ROLE_CODE_PATTERN, max_length=255)
    name: str = Field(default="", max_length=255)
    description: Optional[str] = None
    is_active: bool = True
    is_default: bool = False
    permissions: list[str] = Field(default_factory=list)

    @field_validator("permissions", mode="before")
    @classmethod
    def dedupe_codes(cls, values: list) -> list[str]:
        """Strip and deduplicate permission codes, preserving order."""
        seen: set[str] = set()
        result: list[str] = []
        for v in values or []:
            code = str(v).strip()
            if code and code not in seen:
                seen.add(code)
                result.append(code)
        return result


class RolePatch(BaseModel):
    code: Optional[str] = Field(default=None, pattern=ROLE_CODE_PATTERN, max_length=255)
    name: Optional[str] = Field(default=None, max_length=255)
    description: Optional[str] = None
    is_active: Optional[bool] = None
    is_default: Optional[bool] = None


class RoleResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    code: str
    name: str
    description: Optional[str] = None
    is_active: bool
    is_system: bool
    is_default: bool
    permissions: list[str]


# ---------------------------------------------------------------------------
# Administration -- users
# ---------------------------------------------------------------------------


class UserCreate(BaseModel):
    """Request body for POST /api/v1/users. Roles are given by code."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    password: str = Field(min_length=1, max_length=128)
    first_name: str = Field(default="", max_length=255)
    last_name: str = Field(default="", max_length=255)
    roles: list[str] = Field(default_factory=list)


class UserPatch(BaseModel):
    is_active: Optional[bool] = None
    first_name: Optional[str] = Field(default=None, max_length=255)
    last_name: Optional[str] = Field(default=None, max_length=255)


class CodeList(BaseModel):
    """Body for the PUT endpoints that replace a set of links by code."""

    codes: list[str] = Field(default_factory=list)


class UserResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    first_name: str
    last_name: str
    is_active: bool
    is_locked: bool
    roles: list[str]
    created_at: str
    last_login: Optional[str] = None


class UserPermissionsResponse(BaseModel):
    """Effective permissions of a user, plus where they came from."""

    model_config = ConfigDict(frozen=True)

    user_id: int
    effective: list[str]
    direct: list[str]
    roles: dict[str, list[str]]


class TokenRevokeRequest(BaseModel):
    token: str = Field(min_length=1, max_length=4096)
    # False: the revocation lapses at the token's own exp claim.
    permanent: bool = False


# ---------------------------------------------------------------------------
# Shared
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
