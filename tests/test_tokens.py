"""
tests/test_tokens.py -- Unit tests for credential primitives in auth/tokens.py.

Coverage:
  - bcrypt hash / verify, malformed hash treated as mismatch
  - password strength rule (length + complexity) -> WeakPasswordError
  - JWT round trip carries a string subject and a unique jti
  - expired / tampered / wrong-subject tokens raise InvalidCredential
  - token hashing is deterministic SHA-256 and never equals the token
  - unverified_expiry reads exp without trusting the signature
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from auth.errors import InvalidCredential, WeakPasswordError
from auth.tokens import (
    create_access_token,
    decode_access_token,
    hash_password,
    hash_token,
    token_expiry,
    unverified_expiry,
    validate_password_strength,
    verify_password,
)


class TestPasswords:
    def test_hash_and_verify(self) -> None:
        hashed = hash_password("Str0ng!Passw0rd")
        assert hashed != "Str0ng!Passw0rd"
        assert verify_password("Str0ng!Passw0rd", hashed)
        assert not verify_password("wrong", hashed)

    def test_malformed_hash_is_a_mismatch(self) -> None:
        assert verify_password("anything", "not-a-bcrypt-hash") is False

    @pytest.mark.parametrize(
        "password",
        ["Sh0rt!", "alllower1!", "ALLUPPER1!", "NoDigits!!", "NoSpecial12"],
    )
    def test_weak_passwords_rejected(self, password: str) -> None:
        with pytest.raises(WeakPasswordError) as exc_info:
            validate_password_strength(password)
        assert exc_info.value.status_code == 422

    def test_strong_password_accepted(self) -> None:
        validate_password_strength("Str0ng!Passw0rd")


class TestAccessTokens:
    def test_round_trip(self) -> None:
        token = create_access_token(42, "a@example.com", expire_seconds=60)
        payload = decode_access_token(token)
        assert payload["sub"] == "42"
        assert payload["email"] == "a@example.com"
        assert {"iat", "exp", "jti"} <= payload.keys()

    def test_tokens_issued_together_are_distinct(self) -> None:
        """jti keeps two same-second tokens apart, so revoking one leaves the other valid."""
        now = datetime.now(timezone.utc)
        t1 = create_access_token(1, "a@example.com", now=now)
        t2 = create_access_token(1, "a@example.com", now=now)
        assert t1 != t2
        assert hash_token(t1) != hash_token(t2)

    def test_expired_token_rejected(self) -> None:
        issued = datetime.now(timezone.utc) - timedelta(hours=2)
        token = create_access_token(1, "a@example.com", expire_seconds=60, now=issued)
        with pytest.raises(InvalidCredential):
            decode_access_token(token)

    def test_tampered_token_rejected(self) -> None:
        token = create_access_token(1, "a@example.com")
        forged = jwt.encode(jwt.get_unverified_claims(token), "x" * 32, algorithm="HS256")
        with pytest.raises(InvalidCredential):
            decode_access_token(forged)

    def test_garbage_rejected(self) -> None:
        with pytest.raises(InvalidCredential):
            decode_access_token("not.a.jwt")

    def test_token_expiry_matches_lifetime(self) -> None:
        now = datetime.now(timezone.utc).replace(microsecond=0)
        token = create_access_token(1, "a@example.com", expire_seconds=600, now=now)
        assert token_expiry(decode_access_token(token)) == now + timedelta(seconds=600)


class TestTokenHashing:
    def test_deterministic_sha256(self) -> None:
        assert hash_token("abc") == hash_token("abc")
        assert len(hash_token("abc")) == 64
        assert hash_token("abc") != "abc"

    def test_unverified_expiry(self) -> None:
        now = datetime.now(timezone.utc).replace(microsecond=0)
        token = create_access_token(1, "a@example.com", expire_seconds=60, now=now)
        assert unverified_expiry(token) == now + timedelta(seconds=60)

    def test_unverified_expiry_of_garbage_is_none(self) -> None:
        assert unverified_expiry("garbage") is None
