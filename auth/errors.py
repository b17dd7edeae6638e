"""
auth/errors.py -- Error taxonomy for authentication and authorization outcomes.

Every class here is an expected, routine request outcome -- not a crash.
Each carries the HTTP status and a stable machine-readable code so the API
layer can map any of them to the ErrorResponse envelope with one handler.

Store connectivity failures are deliberately NOT part of this hierarchy.
"Could not verify" must surface as a 500, never as "verified and denied".

Layer rule: stdlib only. No imports from api/ or fastapi.
"""

from __future__ import annotations

from collections.abc import Iterable


class AuthError(Exception):
    """Base class for request-path authorization outcomes."""

    status_code: int = 401
    code: str = "unauthorized"
    message: str = "Authentication required."

    def __init__(self, message: str | None = None, *, detail: str | None = None) -> None:
        self.message = message or self.message
        self.detail = detail
        super().__init__(self.message)


# ---------------------------------------------------------------------------
# 401 -- authentication failures
# ---------------------------------------------------------------------------


class MissingOrMalformedCredential(AuthError):
    code = "missing_or_malformed_credential"
    message = "Missing or malformed bearer credential."


class RevokedCredential(AuthError):
    code = "revoked_credential"
    message = "Credential has been revoked."


class InvalidCredential(AuthError):
    """Bad signature, expired token, or a payload without a usable subject."""

    code = "invalid_credential"
    message = "Invalid or expired credential."


class PrincipalNotFound(AuthError):
    code = "principal_not_found"
    message = "User not found."


class AccountLocked(AuthError):
    code = "account_locked"
    message = "Account is temporarily locked."


class AccountInactive(AuthError):
    code = "account_inactive"
    message = "Account is inactive. Please contact an administrator."


class BadCredentials(AuthError):
    """Login failure. Same message for unknown email and wrong password."""

    code = "bad_credentials"
    message = "Invalid email or password."


# ---------------------------------------------------------------------------
# 403 / 429
# ---------------------------------------------------------------------------


class InsufficientPermission(AuthError):
    status_code = 403
    code = "insufficient_permission"
    message = "You do not have permission to access this resource."

    def __init__(self, missing: Iterable[str] = ()) -> None:
        self.missing = sorted(missing)
        detail = f"Missing required permissions: {', '.join(self.missing)}" if self.missing else None
        super().__init__(detail=detail)


class RateLimited(AuthError):
    status_code = 429
    code = "rate_limited"
    message = "Too many requests."


# ---------------------------------------------------------------------------
# Administrative / store errors
# ---------------------------------------------------------------------------


class StoreError(Exception):
    """Domain error raised by CredentialStore write operations."""

    status_code: int = 400
    code: str = "bad_request"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class NotFoundError(StoreError):
    status_code = 404
    code = "not_found"


class ConflictError(StoreError):
    status_code = 409
    code = "conflict"


class SystemRoleError(ConflictError):
    """System roles keep their code and cannot be deleted."""

    code = "system_role"


class WeakPasswordError(StoreError):
    status_code = 422
    code = "weak_password"
