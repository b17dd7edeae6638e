"""
auth/store.py -- SQLAlchemy Core persistence layer for authorization entities.

Pattern: Repository + Data Mapper. CredentialStore is the repository;
_row_to_user / _row_to_role / _row_to_permission are the mappers. Route,
gateway and policy code never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Lockout counters are only ever changed by single conditional UPDATE
  statements (record_failed_attempt, record_successful_login). Concurrent
  failed logins for one account are expected under a credential-stuffing
  attack; a read-modify-write in Python would lose increments.

Eager loading:
  get_by_id / get_by_email return a User with roles, role permissions and
  direct permissions populated. Every call hits the database -- there is no
  identity map or cache, so an administrative change is visible on the very
  next request.

Timestamps:
  Stored as fixed-width ISO 8601 UTC strings (iso_utc). Fixed width makes SQL
  string comparison equal chronological comparison, which the lockout and
  revocation-expiry predicates rely on.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    case,
    create_engine,
    event,
    or_,
    select,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import ConflictError, NotFoundError, SystemRoleError
from auth.models import Permission, Role, User
from core.config import get_settings

logger = logging.getLogger("jobboard.auth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),  # stored lower-cased
    Column("hashed_password", Text),
    Column("first_name", String(255), nullable=False, server_default=""),
    Column("last_name", String(255), nullable=False, server_default=""),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("failed_login_attempts", Integer, nullable=False, server_default="0"),
    Column("lockout_until", String(32)),  # NULL = not locked
    Column("created_at", String(32), nullable=False),
    Column("last_login", String(32)),
)

_roles = Table(
    "roles",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("code", String(255), nullable=False, unique=True),
    Column("name", String(255), nullable=False, server_default=""),
    Column("description", Text),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("is_system", Integer, nullable=False, server_default="0"),
    Column("is_default", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
)

_permissions = Table(
    "permissions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("code", String(255), nullable=False, unique=True),
    Column("name", String(255), nullable=False, server_default=""),
    Column("description", Text),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("is_default", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
)

_user_roles = Table(
    "user_roles",
    metadata,
    Column("user_id", Integer, primary_key=True),
    Column("role_id", Integer, primary_key=True),
)

_user_permissions = Table(
    "user_permissions",
    metadata,
    Column("user_id", Integer, primary_key=True),
    Column("permission_id", Integer, primary_key=True),
)

_role_permissions = Table(
    "role_permissions",
    metadata,
    Column("role_id", Integer, primary_key=True),
    Column("permission_id", Integer, primary_key=True),
)

revoked_tokens = Table(
    "revoked_tokens",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("token_hash", String(64), nullable=False),  # SHA-256 hex, never the raw token
    Column("expires_at", String(32)),  # NULL = permanent revocation
    Column("created_at", String(32), nullable=False),
    Index("ix_revoked_tokens_token_hash", "token_hash", unique=True),
    Index("ix_revoked_tokens_expires_at", "expires_at"),
)

# ---------------------------------------------------------------------------
# Seed data
# ---------------------------------------------------------------------------

DEFAULT_PERMISSIONS: list[tuple[str, str]] = [
    ("users:create", "Create a user"),
    ("users:read", "List users"),
    ("users:view", "View a user"),
    ("users:update", "Update a user"),
    ("users:delete", "Delete a user"),
    ("users:assign-roles", "Assign roles to users"),
    ("roles:create", "Create a role"),
    ("roles:read", "List roles"),
    ("roles:view", "View a role"),
    ("roles:update", "Update a role"),
    ("roles:delete", "Delete a role"),
    ("permissions:create", "Create a permission"),
    ("permissions:read", "List permissions"),
    ("permissions:update", "Update a permission"),
    ("permissions:delete", "Delete a permission"),
    ("tokens:revoke", "Revoke access tokens"),
]

# code -> (name, is_default, permission codes granted at seed time)
DEFAULT_ROLES: dict[str, tuple[str, bool, list[str]]] = {
    "super-admin": ("Super administrator", False, [code for code, _ in DEFAULT_PERMISSIONS]),
    "admin": (
        "Administrator",
        False,
        [
            "users:create",
            "users:read",
            "users:view",
            "users:update",
            "users:delete",
            "roles:read",
            "roles:view",
            "permissions:read",
        ],
    ),
    "member": ("Member", True, []),
}

# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers proceed while a lockout UPDATE commits."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def iso_utc(dt: datetime) -> str:
    """Fixed-width UTC ISO 8601 string. Naive datetimes are taken as UTC."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


def parse_iso_utc(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


def now_iso_utc() -> str:
    return iso_utc(datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CredentialStore:
    """Repository for User, Role and Permission entities and their links.

    Usage:
        store = CredentialStore()
        store.seed_defaults()
        uid = store.create_user(User(email="a@example.com", hashed_password=hash_password("...")))
        user = store.get_by_id(uid)
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        db_url = db_url or get_settings().database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Seeding
    # ------------------------------------------------------------------

    def seed_defaults(self) -> None:
        """Create the default permissions and system roles if they are missing.

        Idempotent -- safe to call on every startup. Existing records are left
        untouched apart from super-admin, which is topped up with any seed
        permission it lacks.
        """
        with self.engine.begin() as conn:
            for code, name in DEFAULT_PERMISSIONS:
                exists = conn.execute(select(_permissions.c.id).where(_permissions.c.code == code)).first()
                if exists is None:
                    conn.execute(
                        _permissions.insert().values(code=code, name=name, is_default=1, created_at=now_iso_utc())
                    )
            has_default = conn.execute(select(_roles.c.id).where(_roles.c.is_default == 1)).first() is not None
            for code, (name, is_default, perm_codes) in DEFAULT_ROLES.items():
                row = conn.execute(select(_roles.c.id).where(_roles.c.code == code)).first()
                if row is None:
                    make_default = is_default and not has_default
                    result = conn.execute(
                        _roles.insert().values(
                            code=code,
                            name=name,
                            is_system=1,
                            is_default=1 if make_default else 0,
                            created_at=now_iso_utc(),
                        )
                    )
                    role_id = result.inserted_primary_key[0]
                    has_default = has_default or make_default
                    self._link_role_permissions(conn, role_id, perm_codes)
                elif code == "super-admin":
                    self._link_role_permissions(conn, row.id, perm_codes)
        logger.info("Default roles and permissions seeded")

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def create_user(self, user: User, role_ids: Iterable[int] = ()) -> int:
        """Insert a new user (plus optional role links) and return its ID.

        Raises ConflictError if the email is already registered.
        """
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    _users.insert().values(
                        email=user.email.strip().lower(),
                        hashed_password=user.hashed_password,
                        first_name=user.first_name,
                        last_name=user.last_name,
                        is_active=1 if user.is_active else 0,
                        failed_login_attempts=0,
                        created_at=now_iso_utc(),
                    )
                )
                user_id = result.inserted_primary_key[0]
                for role_id in set(role_ids):
                    conn.execute(_user_roles.insert().values(user_id=user_id, role_id=role_id))
        except IntegrityError as exc:
            raise ConflictError("A user with that email already exists.") from exc
        return user_id

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key with roles and permissions loaded. None if absent."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
            return self._load_user(conn, row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email (case-insensitive) with roles and permissions loaded."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email.strip().lower())).fetchone()
            return self._load_user(conn, row) if row is not None else None

    def list_users(self) -> list[User]:
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.id)).fetchall()
            return [self._load_user(conn, r) for r in rows]

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable profile fields: is_active, first_name, last_name, hashed_password.

        Returns True if a row was updated, False if user_id was not found.
        """
        allowed = {"is_active", "first_name", "last_name", "hashed_password"}
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        if "is_active" in fields:
            fields["is_active"] = 1 if fields["is_active"] else 0
        if not fields:
            return False
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def delete_user(self, user_id: int) -> bool:
        """Delete a user and its role/permission links. Returns False if not found."""
        with self.engine.begin() as conn:
            conn.execute(_user_roles.delete().where(_user_roles.c.user_id == user_id))
            conn.execute(_user_permissions.delete().where(_user_permissions.c.user_id == user_id))
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
        return result.rowcount > 0

    def update_last_login(self, user_id: int) -> None:
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=now_iso_utc()))
            conn.commit()

    def set_user_roles(self, user_id: int, role_ids: Iterable[int]) -> None:
        """Replace the user's role set. Raises NotFoundError for an unknown user or role."""
        role_ids = set(role_ids)
        with self.engine.begin() as conn:
            self._require_user(conn, user_id)
            if role_ids:
                found = set(conn.execute(select(_roles.c.id).where(_roles.c.id.in_(role_ids))).scalars())
                missing = role_ids - found
                if missing:
                    raise NotFoundError(f"Unknown role ids: {sorted(missing)}")
            conn.execute(_user_roles.delete().where(_user_roles.c.user_id == user_id))
            for role_id in role_ids:
                conn.execute(_user_roles.insert().values(user_id=user_id, role_id=role_id))

    def set_user_permissions(self, user_id: int, codes: Iterable[str]) -> None:
        """Replace the user's direct permissions by code."""
        with self.engine.begin() as conn:
            self._require_user(conn, user_id)
            permission_ids = self._permission_ids_for_codes(conn, codes)
            conn.execute(_user_permissions.delete().where(_user_permissions.c.user_id == user_id))
            for permission_id in permission_ids:
                conn.execute(_user_permissions.insert().values(user_id=user_id, permission_id=permission_id))

    # ------------------------------------------------------------------
    # Lockout (atomic conditional updates)
    # ------------------------------------------------------------------

    def record_failed_attempt(self, user_id: int, now: datetime, threshold: int, lockout_until: datetime) -> bool:
        """Count one failed login in a single UPDATE.

        The WHERE clause excludes accounts whose lockout is still running, so a
        failure during lockout changes nothing and cannot extend it. If a
        previous lockout has elapsed, counting restarts at 1 and the stale
        lockout_until is cleared. When the new count reaches `threshold`,
        lockout_until is set to `lockout_until`.

        Returns True if the row was updated, False if the account is locked
        (or does not exist).
        """
        now_s = iso_utc(now)
        elapsed = _users.c.lockout_until.is_not(None) & (_users.c.lockout_until <= now_s)
        new_count = case((elapsed, 1), else_=_users.c.failed_login_attempts + 1)
        stmt = (
            _users.update()
            .where((_users.c.id == user_id) & or_(_users.c.lockout_until.is_(None), _users.c.lockout_until <= now_s))
            .values(
                failed_login_attempts=new_count,
                lockout_until=case((new_count >= threshold, iso_utc(lockout_until)), else_=None),
            )
        )
        with self.engine.connect() as conn:
            result = conn.execute(stmt)
            conn.commit()
        return result.rowcount > 0

    def record_successful_login(self, user_id: int, now: datetime) -> bool:
        """Reset the counter and clear lockout, unless a lockout is currently running.

        Returns False when the account is locked at `now` (a concurrent failure
        may have locked it between the password check and this call).
        """
        now_s = iso_utc(now)
        stmt = (
            _users.update()
            .where((_users.c.id == user_id) & or_(_users.c.lockout_until.is_(None), _users.c.lockout_until <= now_s))
            .values(failed_login_attempts=0, lockout_until=None)
        )
        with self.engine.connect() as conn:
            result = conn.execute(stmt)
            conn.commit()
        return result.rowcount > 0

    def clear_lockout(self, user_id: int) -> bool:
        """Administrative unlock. Unconditional. Returns False if the user does not exist."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(failed_login_attempts=0, lockout_until=None)
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Permission queries
    # ------------------------------------------------------------------

    def create_permission(self, permission: Permission) -> int:
        """Insert a permission. Raises ConflictError if the code already exists."""
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    _permissions.insert().values(
                        code=permission.code,
                        name=permission.name or permission.code,
                        description=permission.description,
                        is_active=1 if permission.is_active else 0,
                        is_default=1 if permission.is_default else 0,
                        created_at=now_iso_utc(),
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            raise ConflictError(f"Permission with code {permission.code!r} already exists.") from exc
        return result.inserted_primary_key[0]

    def get_permission(self, permission_id: int) -> Permission | None:
        with self.engine.connect() as conn:
            row = conn.execute(_permissions.select().where(_permissions.c.id == permission_id)).fetchone()
        return _row_to_permission(row) if row is not None else None

    def get_permission_by_code(self, code: str) -> Permission | None:
        with self.engine.connect() as conn:
            row = conn.execute(_permissions.select().where(_permissions.c.code == code)).fetchone()
        return _row_to_permission(row) if row is not None else None

    def list_permissions(self) -> list[Permission]:
        with self.engine.connect() as conn:
            rows = conn.execute(_permissions.select().order_by(_permissions.c.code)).fetchall()
        return [_row_to_permission(r) for r in rows]

    def update_permission(self, permission_id: int, **fields) -> bool:
        """Update name, description, is_active or is_default.

        Deactivating keeps every role/user link in place; the resolver simply
        stops counting the permission.
        """
        allowed = {"name", "description", "is_active", "is_default"}
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"Unknown permission fields: {unknown!r}")
        for flag in ("is_active", "is_default"):
            if flag in fields:
                fields[flag] = 1 if fields[flag] else 0
        if not fields:
            return False
        with self.engine.connect() as conn:
            result = conn.execute(_permissions.update().where(_permissions.c.id == permission_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def delete_permission(self, permission_id: int) -> None:
        """Delete a permission and every role/user link to it. Raises NotFoundError."""
        with self.engine.begin() as conn:
            if conn.execute(select(_permissions.c.id).where(_permissions.c.id == permission_id)).first() is None:
                raise NotFoundError(f"Permission {permission_id} not found.")
            conn.execute(_role_permissions.delete().where(_role_permissions.c.permission_id == permission_id))
            conn.execute(_user_permissions.delete().where(_user_permissions.c.permission_id == permission_id))
            conn.execute(_permissions.delete().where(_permissions.c.id == permission_id))

    # ------------------------------------------------------------------
    # Role queries
    # ------------------------------------------------------------------

    def create_role(self, role: Role, permission_codes: Iterable[str] = ()) -> int:
        """Insert a role with optional permissions (by code).

        If the role is marked default, the flag is cleared on every other role
        in the same transaction so at most one default role exists.
        Raises ConflictError on a duplicate code, NotFoundError on unknown
        permission codes.
        """
        try:
            with self.engine.begin() as conn:
                if role.is_default:
                    conn.execute(_roles.update().where(_roles.c.is_default == 1).values(is_default=0))
                result = conn.execute(
                    _roles.insert().values(
                        code=role.code,
                        name=role.name or role.code,
                        description=role.description,
                        is_active=1 if role.is_active else 0,
                        is_system=1 if role.is_system else 0,
                        is_default=1 if role.is_default else 0,
                        created_at=now_iso_utc(),
                    )
                )
                role_id = result.inserted_primary_key[0]
                self._link_role_permissions(conn, role_id, permission_codes, strict=True)
        except IntegrityError as exc:
            raise ConflictError(f"Role with code {role.code!r} already exists.") from exc
        return role_id

    def get_role(self, role_id: int) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(_roles.c.id == role_id)).fetchone()
            return self._load_role(conn, row) if row is not None else None

    def get_role_by_code(self, code: str) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(_roles.c.code == code)).fetchone()
            return self._load_role(conn, row) if row is not None else None

    def get_default_role(self) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(_roles.c.is_default == 1)).fetchone()
            return self._load_role(conn, row) if row is not None else None

    def list_roles(self) -> list[Role]:
        with self.engine.connect() as conn:
            rows = conn.execute(_roles.select().order_by(_roles.c.code)).fetchall()
            return [self._load_role(conn, r) for r in rows]

    def update_role(self, role_id: int, **fields) -> None:
        """Update code, name, description, is_active or is_default.

        Raises NotFoundError for an unknown role, SystemRoleError when the
        code of a system role would change, ConflictError on a duplicate code.
        Setting is_default=True clears the flag on every other role first.
        """
        allowed = {"code", "name", "description", "is_active", "is_default"}
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"Unknown role fields: {unknown!r}")
        try:
            with self.engine.begin() as conn:
                row = conn.execute(_roles.select().where(_roles.c.id == role_id)).fetchone()
                if row is None:
                    raise NotFoundError(f"Role {role_id} not found.")
                if row.is_system and "code" in fields and fields["code"] != row.code:
                    raise SystemRoleError("The code of a system role cannot be changed.")
                if fields.get("is_default"):
                    conn.execute(
                        _roles.update().where((_roles.c.is_default == 1) & (_roles.c.id != role_id)).values(is_default=0)
                    )
                for flag in ("is_active", "is_default"):
                    if flag in fields:
                        fields[flag] = 1 if fields[flag] else 0
                if fields:
                    conn.execute(_roles.update().where(_roles.c.id == role_id).values(**fields))
        except IntegrityError as exc:
            raise ConflictError(f"Role with code {fields.get('code')!r} already exists.") from exc

    def delete_role(self, role_id: int) -> None:
        """Delete a non-system role and its links. Raises NotFoundError / SystemRoleError."""
        with self.engine.begin() as conn:
            row = conn.execute(_roles.select().where(_roles.c.id == role_id)).fetchone()
            if row is None:
                raise NotFoundError(f"Role {role_id} not found.")
            if row.is_system:
                raise SystemRoleError("Cannot delete a system role.")
            conn.execute(_role_permissions.delete().where(_role_permissions.c.role_id == role_id))
            conn.execute(_user_roles.delete().where(_user_roles.c.role_id == role_id))
            conn.execute(_roles.delete().where(_roles.c.id == role_id))

    def set_role_permissions(self, role_id: int, codes: Iterable[str]) -> None:
        """Replace a role's permission set by code."""
        with self.engine.begin() as conn:
            if conn.execute(select(_roles.c.id).where(_roles.c.id == role_id)).first() is None:
                raise NotFoundError(f"Role {role_id} not found.")
            conn.execute(_role_permissions.delete().where(_role_permissions.c.role_id == role_id))
            self._link_role_permissions(conn, role_id, codes, strict=True)

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_user(self, conn: Connection, user_id: int) -> None:
        if conn.execute(select(_users.c.id).where(_users.c.id == user_id)).first() is None:
            raise NotFoundError(f"User {user_id} not found.")

    def _permission_ids_for_codes(self, conn: Connection, codes: Iterable[str]) -> set[int]:
        codes = set(codes)
        if not codes:
            return set()
        rows = conn.execute(select(_permissions.c.id, _permissions.c.code).where(_permissions.c.code.in_(codes))).all()
        missing = codes - {r.code for r in rows}
        if missing:
            raise NotFoundError(f"Unknown permission codes: {sorted(missing)}")
        return {r.id for r in rows}

    def _link_role_permissions(
        self, conn: Connection, role_id: int, codes: Iterable[str], strict: bool = False
    ) -> None:
        """Add missing role->permission links. strict=False skips unknown codes (seeding)."""
        codes = set(codes)
        if not codes:
            return
        if strict:
            wanted = self._permission_ids_for_codes(conn, codes)
        else:
            wanted = set(conn.execute(select(_permissions.c.id).where(_permissions.c.code.in_(codes))).scalars())
        existing = set(
            conn.execute(
                select(_role_permissions.c.permission_id).where(_role_permissions.c.role_id == role_id)
            ).scalars()
        )
        for permission_id in wanted - existing:
            conn.execute(_role_permissions.insert().values(role_id=role_id, permission_id=permission_id))

    def _role_permissions_for(self, conn: Connection, role_ids: list[int]) -> dict[int, list[Permission]]:
        grouped: dict[int, list[Permission]] = {rid: [] for rid in role_ids}
        if not role_ids:
            return grouped
        rows = conn.execute(
            select(_role_permissions.c.role_id, _permissions)
            .join(_permissions, _permissions.c.id == _role_permissions.c.permission_id)
            .where(_role_permissions.c.role_id.in_(role_ids))
            .order_by(_permissions.c.code)
        ).fetchall()
        for r in rows:
            grouped[r.role_id].append(_row_to_permission(r))
        return grouped

    def _load_role(self, conn: Connection, row) -> Role:
        role = _row_to_role(row)
        role.permissions = self._role_permissions_for(conn, [role.id])[role.id]
        return role

    def _load_user(self, conn: Connection, row) -> User:
        user = _row_to_user(row)
        role_rows = conn.execute(
            select(_roles)
            .join(_user_roles, _user_roles.c.role_id == _roles.c.id)
            .where(_user_roles.c.user_id == user.id)
            .order_by(_roles.c.code)
        ).fetchall()
        roles = [_row_to_role(r) for r in role_rows]
        perms_by_role = self._role_permissions_for(conn, [r.id for r in roles])
        for role in roles:
            role.permissions = perms_by_role[role.id]
        user.roles = roles
        direct_rows = conn.execute(
            select(_permissions)
            .join(_user_permissions, _user_permissions.c.permission_id == _permissions.c.id)
            .where(_user_permissions.c.user_id == user.id)
            .order_by(_permissions.c.code)
        ).fetchall()
        user.permissions = [_row_to_permission(r) for r in direct_rows]
        return user


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        hashed_password=row.hashed_password,
        first_name=row.first_name,
        last_name=row.last_name,
        is_active=bool(row.is_active),
        failed_login_attempts=row.failed_login_attempts,
        lockout_until=parse_iso_utc(row.lockout_until),
        created_at=row.created_at,
        last_login=row.last_login,
    )


def _row_to_role(row) -> Role:
    return Role(
        id=row.id,
        code=row.code,
        name=row.name,
        description=row.description,
        is_active=bool(row.is_active),
        is_system=bool(row.is_system),
        is_default=bool(row.is_default),
        created_at=row.created_at,
    )


def _row_to_permission(row) -> Permission:
    return Permission(
        id=row.id,
        code=row.code,
        name=row.name,
        description=row.description,
        is_active=bool(row.is_active),
        is_default=bool(row.is_default),
        created_at=row.created_at,
    )
