"""
auth/tokens.py -- JWT, password hashing, token hashing and login primitives.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       sub (user id as a string), email, iat, exp and a random jti. The jti
       makes two tokens issued in the same second distinct, so revoking one
       never revokes the other. decode_access_token() raises InvalidCredential
       on any failure -- the gateway turns that into a 401.

  Passwords: bcrypt used directly. The _DUMMY_HASH constant enables timing
       equalization in authenticate_user() so response time does not reveal
       whether an email exists [C1].

  Token hashing: SHA-256 of the raw token. Deterministic, so the revocation
       registry can do an exact-match lookup against a unique index. The raw
       token is never persisted or logged.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import logging
import re
import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

from auth.errors import AccountInactive, AccountLocked, BadCredentials, InvalidCredential, WeakPasswordError
from core.config import get_settings

if TYPE_CHECKING:
    from auth.lockout import LockoutPolicy
    from auth.models import User
    from auth.store import CredentialStore

logger = logging.getLogger("jobboard.auth")

_settings = get_settings()

_ALGORITHM = "HS256"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Passwords longer than 72 bytes are truncated by bcrypt. The API layer caps
    password fields at 128 characters.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash -- treat as a mismatch.
        return False


# Timing equalization dummy hash [C1].
_DUMMY_HASH: str = hash_password("jobboard_timing_dummy")

_UPPER = re.compile(r"[A-Z]")
_LOWER = re.compile(r"[a-z]")
_DIGIT = re.compile(r"[0-9]")
_SPECIAL = re.compile(r"[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>/?]")


def validate_password_strength(plain: str) -> None:
    """Raise WeakPasswordError unless the password meets length and complexity rules.

    Complexity: at least one uppercase letter, one lowercase letter, one digit
    and one special character.
    """
    min_length = _settings.password_min_length
    if len(plain) < min_length:
        raise WeakPasswordError(f"Password must be at least {min_length} characters long.")
    if not all(p.search(plain) for p in (_UPPER, _LOWER, _DIGIT, _SPECIAL)):
        raise WeakPasswordError(
            "Password must include at least one uppercase letter, one lowercase letter, "
            "one number, and one special character."
        )


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def create_access_token(user_id: int, email: str, expire_seconds: int = 0, now: datetime | None = None) -> str:
    """Encode a signed JWT for the given user.

    Args:
        user_id:        Numeric user ID, stored as the string subject claim.
        email:          Informational claim. The gateway re-reads the email
                        from the store, it never trusts this one.
        expire_seconds: Token lifetime. 0 (default) uses TOKEN_EXPIRE_SECONDS.
        now:            Issue time override, for tests that need an already
                        expired token.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    issued = now or datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "email": email,
        "iat": issued,
        "exp": issued + timedelta(seconds=duration),
        "jti": secrets.token_hex(8),
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Verify signature and expiry and return the payload.

    Raises InvalidCredential on a bad signature, an expired token, or a
    payload whose subject is not a numeric user id.
    """
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError as exc:
        raise InvalidCredential() from exc
    sub = payload.get("sub")
    if not isinstance(sub, str) or not sub.isdigit():
        raise InvalidCredential()
    return payload


def token_expiry(payload: dict) -> datetime | None:
    """Return the exp claim of a decoded payload as an aware UTC datetime."""
    exp = payload.get("exp")
    if exp is None:
        return None
    return datetime.fromtimestamp(int(exp), tz=timezone.utc)


def unverified_expiry(token: str) -> datetime | None:
    """Read exp from a token WITHOUT verifying it. None if the token is unparseable.

    Only for choosing how long a revocation record must live. Never use the
    result to make an authorization decision.
    """
    try:
        claims = jwt.get_unverified_claims(token)
    except JWTError:
        return None
    try:
        return token_expiry(claims)
    except (TypeError, ValueError, OverflowError):
        return None


def hash_token(token: str) -> str:
    """Return the SHA-256 hex digest of a raw token. Used for revocation lookups."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Login (constant-time) [C1]
# ---------------------------------------------------------------------------


def authenticate_user(
    store: CredentialStore,
    lockout: LockoutPolicy,
    email: str,
    password: str,
    now: datetime | None = None,
) -> User:
    """Check an email/password pair, applying the lockout policy.

    Always runs bcrypt whether or not the user exists, so response time does
    not reveal which emails are registered.

    Order of checks:
      1. Unknown email -> BadCredentials.
      2. Account currently locked -> AccountLocked. The counter is NOT
         incremented, so probing cannot extend the lockout.
      3. Wrong password -> record the failure, BadCredentials.
      4. Inactive account -> AccountInactive.
      5. Success -> reset counter and lockout, stamp last_login.
    """
    now = now or datetime.now(timezone.utc)
    user = store.get_by_email(email)
    if user is None or user.hashed_password is None:
        verify_password(password, _DUMMY_HASH)
        raise BadCredentials()
    if user.is_locked(now):
        verify_password(password, _DUMMY_HASH)
        raise AccountLocked()
    if not verify_password(password, user.hashed_password):
        lockout.record_failure(user.id, now=now)
        raise BadCredentials()
    if not user.is_active:
        raise AccountInactive()
    lockout.record_success(user.id, now=now)
    store.update_last_login(user.id)
    return user
