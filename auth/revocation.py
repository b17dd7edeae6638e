"""
auth/revocation.py -- Revoked-token registry (logout, password change, admin revoke).

A JWT is valid until its exp claim. Revocation closes that window: the gateway
checks the registry on every request, before it even verifies the signature.

Security:
  Only the SHA-256 hash of a token is stored. Log lines carry at most the
  first 8 hex characters of the hash, never the raw token.

  revoke() is idempotent -- revoking the same token twice is not an error.
  cleanup_expired() deletes only rows whose expires_at has passed; a row with
  no expiry is a permanent revocation and is never removed.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import delete, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import RevokedToken
from auth.store import iso_utc, now_iso_utc, parse_iso_utc, revoked_tokens
from auth.tokens import hash_token

logger = logging.getLogger("jobboard.auth")


class TokenRevocationRegistry:
    """Hash-only store of revoked credentials, sharing the credential store's engine."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def revoke(self, token: str, expires_at: datetime | None = None) -> None:
        """Mark `token` revoked. `expires_at` None makes the revocation permanent."""
        token_hash = hash_token(token)
        try:
            with self.engine.connect() as conn:
                conn.execute(
                    revoked_tokens.insert().values(
                        token_hash=token_hash,
                        expires_at=iso_utc(expires_at) if expires_at is not None else None,
                        created_at=now_iso_utc(),
                    )
                )
                conn.commit()
        except IntegrityError:
            logger.debug("Token %s already revoked", token_hash[:8])
            return
        logger.info("Token %s revoked", token_hash[:8])

    def is_revoked(self, token: str) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(revoked_tokens.c.id).where(revoked_tokens.c.token_hash == hash_token(token))
            ).first()
        return row is not None

    def get(self, token: str) -> RevokedToken | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                revoked_tokens.select().where(revoked_tokens.c.token_hash == hash_token(token))
            ).fetchone()
        if row is None:
            return None
        return RevokedToken(
            id=row.id,
            token_hash=row.token_hash,
            expires_at=parse_iso_utc(row.expires_at),
            created_at=row.created_at,
        )

    def cleanup_expired(self, now: datetime | None = None) -> int:
        """Delete revocations whose token has expired anyway. Returns the number removed."""
        now = now or datetime.now(timezone.utc)
        stmt = delete(revoked_tokens).where(
            revoked_tokens.c.expires_at.is_not(None) & (revoked_tokens.c.expires_at < iso_utc(now))
        )
        with self.engine.connect() as conn:
            result = conn.execute(stmt)
            conn.commit()
        return result.rowcount
