"""
tests/test_gateway.py -- Unit tests for the Auth Gateway.

Calls authenticate_request() directly with a raw Authorization value, so
each rejection reason is checked in isolation from HTTP plumbing.

Coverage:
  - bearer header parsing (exact "Bearer <token>")
  - revoked / invalid / unknown-subject / locked / inactive rejections
  - revocation wins over expiry
  - Principal carries freshly resolved permissions
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from auth.errors import (
    AccountInactive,
    AccountLocked,
    InvalidCredential,
    MissingOrMalformedCredential,
    PrincipalNotFound,
    RevokedCredential,
)
from auth.gateway import authenticate_request, extract_bearer_token
from auth.lockout import LockoutPolicy
from auth.revocation import TokenRevocationRegistry
from auth.store import CredentialStore
from auth.tokens import create_access_token
from tests.conftest import make_user


class TestExtractBearerToken:
    @pytest.mark.parametrize(
        "header",
        [None, "", "Bearer", "Bearer ", "bearer abc", "Basic abc", "Bearer a b", "Bearer  abc", "abc"],
    )
    def test_malformed(self, header: str | None) -> None:
        with pytest.raises(MissingOrMalformedCredential):
            extract_bearer_token(header)

    def test_well_formed(self) -> None:
        assert extract_bearer_token("Bearer abc.def.ghi") == "abc.def.ghi"


class TestAuthenticateRequest:
    def test_valid_token_yields_principal(
        self, store: CredentialStore, revocations: TokenRevocationRegistry
    ) -> None:
        uid = make_user(store, "u@example.com", roles=["admin"], permissions=["tokens:revoke"])
        token = create_access_token(uid, "u@example.com")

        principal, raw, claims = authenticate_request(f"Bearer {token}", store, revocations)

        assert principal.user_id == uid
        assert principal.email == "u@example.com"
        assert {"users:read", "tokens:revoke"} <= principal.permissions
        assert raw == token
        assert claims["sub"] == str(uid)

    def test_revoked_token(self, store: CredentialStore, revocations: TokenRevocationRegistry) -> None:
        uid = make_user(store, "u@example.com")
        token = create_access_token(uid, "u@example.com")
        revocations.revoke(token)
        with pytest.raises(RevokedCredential):
            authenticate_request(f"Bearer {token}", store, revocations)

    def test_revocation_checked_before_expiry(
        self, store: CredentialStore, revocations: TokenRevocationRegistry
    ) -> None:
        uid = make_user(store, "u@example.com")
        issued = datetime.now(timezone.utc) - timedelta(hours=2)
        token = create_access_token(uid, "u@example.com", expire_seconds=60, now=issued)
        revocations.revoke(token)
        with pytest.raises(RevokedCredential):
            authenticate_request(f"Bearer {token}", store, revocations)

    def test_expired_token(self, store: CredentialStore, revocations: TokenRevocationRegistry) -> None:
        uid = make_user(store, "u@example.com")
        issued = datetime.now(timezone.utc) - timedelta(hours=2)
        token = create_access_token(uid, "u@example.com", expire_seconds=60, now=issued)
        with pytest.raises(InvalidCredential):
            authenticate_request(f"Bearer {token}", store, revocations)

    def test_unknown_subject(self, store: CredentialStore, revocations: TokenRevocationRegistry) -> None:
        token = create_access_token(9999, "ghost@example.com")
        with pytest.raises(PrincipalNotFound):
            authenticate_request(f"Bearer {token}", store, revocations)

    def test_deleted_user(self, store: CredentialStore, revocations: TokenRevocationRegistry) -> None:
        uid = make_user(store, "u@example.com")
        token = create_access_token(uid, "u@example.com")
        store.delete_user(uid)
        with pytest.raises(PrincipalNotFound):
            authenticate_request(f"Bearer {token}", store, revocations)

    def test_locked_user(
        self, store: CredentialStore, revocations: TokenRevocationRegistry, lockout: LockoutPolicy
    ) -> None:
        uid = make_user(store, "u@example.com")
        token = create_access_token(uid, "u@example.com")
        now = datetime.now(timezone.utc)
        for _ in range(5):
            lockout.record_failure(uid, now=now)
        with pytest.raises(AccountLocked):
            authenticate_request(f"Bearer {token}", store, revocations)

    def test_lock_expired(
        self, store: CredentialStore, revocations: TokenRevocationRegistry, lockout: LockoutPolicy
    ) -> None:
        uid = make_user(store, "u@example.com")
        token = create_access_token(uid, "u@example.com")
        past = datetime.now(timezone.utc) - timedelta(hours=1)
        for _ in range(5):
            lockout.record_failure(uid, now=past)
        principal, _, _ = authenticate_request(f"Bearer {token}", store, revocations)
        assert principal.user_id == uid

    def test_inactive_user(self, store: CredentialStore, revocations: TokenRevocationRegistry) -> None:
        uid = make_user(store, "u@example.com", is_active=False)
        token = create_access_token(uid, "u@example.com")
        with pytest.raises(AccountInactive):
            authenticate_request(f"Bearer {token}", store, revocations)

    def test_permissions_are_not_cached(self, store: CredentialStore, revocations: TokenRevocationRegistry) -> None:
        """An admin change is visible to the very next call with the same token."""
        uid = make_user(store, "u@example.com", permissions=["users:delete"])
        token = create_access_token(uid, "u@example.com")
        first, _, _ = authenticate_request(f"Bearer {token}", store, revocations)
        assert "users:delete" in first.permissions

        perm = store.get_permission_by_code("users:delete")
        store.update_permission(perm.id, is_active=False)

        second, _, _ = authenticate_request(f"Bearer {token}", store, revocations)
        assert "users:delete" not in second.permissions
