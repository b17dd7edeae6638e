"""
auth/gateway.py -- Per-request bearer credential verification.

authenticate_request() is the only way a Principal comes into existence.
The checks run in a fixed order and stop at the first failure:

  1. Authorization header present and exactly "Bearer <token>".
  2. Token hash not in the revocation registry.
  3. Signature and exp verify (HS256).
  4. User named by the sub claim exists.
  5. User is not locked out.
  6. User is active.

The revocation check runs before signature verification, so a revoked token
is always reported as revoked even if it has also expired since.

Nothing is cached: the user, its roles and its permissions are read from the
store on every call. A store failure propagates as-is (a 500 upstream),
never as an authorization decision.

Layer rule: no imports from api/ or fastapi. The caller passes in the raw
header value.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from auth.errors import (
    AccountInactive,
    AccountLocked,
    MissingOrMalformedCredential,
    PrincipalNotFound,
    RevokedCredential,
)
from auth.models import Principal
from auth.permissions import resolve_permissions
from auth.revocation import TokenRevocationRegistry
from auth.store import CredentialStore
from auth.tokens import decode_access_token

logger = logging.getLogger("jobboard.auth")


def extract_bearer_token(authorization: str | None) -> str:
    """Return the token from an 'Authorization: Bearer <token>' value.

    The scheme is case-sensitive and must be followed by exactly one space and
    one non-empty token with no further parts.
    """
    if not authorization:
        raise MissingOrMalformedCredential()
    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer" or not parts[1]:
        raise MissingOrMalformedCredential()
    return parts[1]


def authenticate_request(
    authorization: str | None,
    store: CredentialStore,
    revocations: TokenRevocationRegistry,
    now: datetime | None = None,
) -> tuple[Principal, str, dict]:
    """Verify the bearer credential and build a fresh Principal.

    Returns (principal, raw_token, claims). The raw token and claims are handed
    back so logout can revoke exactly the presented token until its exp.
    Raises an AuthError subclass on any rejection.
    """
    token = extract_bearer_token(authorization)
    if revocations.is_revoked(token):
        raise RevokedCredential()
    claims = decode_access_token(token)
    user = store.get_by_id(int(claims["sub"]))
    if user is None:
        raise PrincipalNotFound()
    if user.is_locked(now or datetime.now(timezone.utc)):
        raise AccountLocked()
    if not user.is_active:
        raise AccountInactive()
    principal = Principal(user_id=user.id, email=user.email, permissions=resolve_permissions(user))
    return principal, token, claims
