"""
auth/models.py -- Domain dataclasses for authorization entities.

Pattern: Data class (pure data container, near-zero logic). Stores and the
gateway do the work. The one behaviour that lives here is
User.set_password(): hashing is an explicit call that produces the hash
immediately, never a save-time hook with a hidden dirty flag.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class Permission:
    """An atomic capability, identified by a globally unique code (e.g. 'applications:update')."""

    code: str
    name: str = ""
    description: str | None = None
    id: int | None = None
    is_active: bool = True
    is_default: bool = False
    created_at: str | None = None


@dataclass
class Role:
    """A named bundle of permissions.

    is_default: the role handed to self-registered users. The store keeps at
        most one default role by unsetting the flag elsewhere on assignment.
    is_system: seeded roles. Their code is immutable and they cannot be deleted.
    """

    code: str
    name: str = ""
    description: str | None = None
    id: int | None = None
    is_active: bool = True
    is_system: bool = False
    is_default: bool = False
    permissions: list[Permission] = field(default_factory=list)
    created_at: str | None = None


@dataclass
class User:
    """An identity record with its role and direct-permission links loaded eagerly.

    hashed_password is write-only from the API's point of view: response
    models never include it. lockout_until is a timezone-aware UTC datetime
    or None.
    """

    email: str
    first_name: str = ""
    last_name: str = ""
    id: int | None = None
    hashed_password: str | None = field(default=None, repr=False)
    is_active: bool = True
    failed_login_attempts: int = 0
    lockout_until: datetime | None = None
    permissions: list[Permission] = field(default_factory=list)
    roles: list[Role] = field(default_factory=list)
    created_at: str | None = None
    last_login: str | None = None

    def set_password(self, plain: str) -> None:
        """Hash `plain` with bcrypt and store the hash on this instance."""
        from auth.tokens import hash_password

        self.hashed_password = hash_password(plain)

    def is_locked(self, now: datetime) -> bool:
        return self.lockout_until is not None and self.lockout_until > now


@dataclass
class RevokedToken:
    """A revocation record. Only the SHA-256 hash is kept, never the raw token.

    expires_at None means the revocation is permanent.
    """

    token_hash: str
    expires_at: datetime | None = None
    id: int | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class Principal:
    """Per-request projection of an authenticated user.

    Built fresh by the gateway on every request and attached to
    request.state.principal. Never cached across requests.
    """

    user_id: int
    email: str
    permissions: frozenset[str] = frozenset()
