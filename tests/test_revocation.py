"""
tests/test_revocation.py -- Unit tests for TokenRevocationRegistry.

Coverage:
  - revocation is immediate and idempotent
  - only the SHA-256 hash is persisted
  - cleanup removes past-expiry rows only; permanent rows survive
  - cleanup is safe to run twice
  - the scheduled loop survives a failed sweep and shuts down only after
    an in-flight sweep finishes
"""

from __future__ import annotations

import asyncio
import threading
import time
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from sqlalchemy import select

from api.main import _revocation_cleanup_loop
from auth.revocation import TokenRevocationRegistry
from auth.store import revoked_tokens
from auth.tokens import hash_token


class TestRevoke:
    def test_revoked_token_is_detected(self, revocations: TokenRevocationRegistry) -> None:
        assert revocations.is_revoked("tok-1") is False
        revocations.revoke("tok-1", expires_at=datetime.now(timezone.utc) + timedelta(hours=1))
        assert revocations.is_revoked("tok-1") is True

    def test_other_tokens_unaffected(self, revocations: TokenRevocationRegistry) -> None:
        revocations.revoke("tok-1")
        assert revocations.is_revoked("tok-2") is False

    def test_revoke_is_idempotent(self, revocations: TokenRevocationRegistry) -> None:
        revocations.revoke("tok-1")
        revocations.revoke("tok-1")
        with revocations.engine.connect() as conn:
            rows = conn.execute(select(revoked_tokens)).fetchall()
        assert len(rows) == 1

    def test_only_hash_is_stored(self, revocations: TokenRevocationRegistry) -> None:
        revocations.revoke("raw-secret-token")
        with revocations.engine.connect() as conn:
            stored = conn.execute(select(revoked_tokens.c.token_hash)).scalars().all()
        assert stored == [hash_token("raw-secret-token")]
        assert "raw-secret-token" not in stored

    def test_record_without_expiry_is_permanent(self, revocations: TokenRevocationRegistry) -> None:
        revocations.revoke("tok-1")
        record = revocations.get("tok-1")
        assert record is not None
        assert record.expires_at is None


class TestCleanup:
    def test_removes_only_expired(self, revocations: TokenRevocationRegistry) -> None:
        now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
        revocations.revoke("expired", expires_at=now - timedelta(minutes=1))
        revocations.revoke("live", expires_at=now + timedelta(minutes=1))
        revocations.revoke("permanent")

        removed = revocations.cleanup_expired(now=now)

        assert removed == 1
        assert revocations.is_revoked("expired") is False
        assert revocations.is_revoked("live") is True
        assert revocations.is_revoked("permanent") is True

    def test_permanent_survives_far_future_cleanup(self, revocations: TokenRevocationRegistry) -> None:
        revocations.revoke("permanent")
        assert revocations.cleanup_expired(now=datetime(2999, 1, 1, tzinfo=timezone.utc)) == 0
        assert revocations.is_revoked("permanent") is True

    def test_cleanup_twice_is_safe(self, revocations: TokenRevocationRegistry) -> None:
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        revocations.revoke("expired", expires_at=now - timedelta(seconds=1))
        assert revocations.cleanup_expired(now=now) == 1
        assert revocations.cleanup_expired(now=now) == 0


class TestCleanupLoop:
    def test_shutdown_waits_for_running_sweep(self) -> None:
        """Cancelling mid-sweep returns only after the worker thread is done."""
        started = threading.Event()
        finished = threading.Event()

        class SlowRegistry:
            def cleanup_expired(self) -> int:
                started.set()
                time.sleep(0.2)
                finished.set()
                return 0

        app = SimpleNamespace(state=SimpleNamespace(revocations=SlowRegistry()))

        async def run() -> None:
            task = asyncio.create_task(_revocation_cleanup_loop(app, 0))
            while not started.is_set():
                await asyncio.sleep(0.01)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            assert finished.is_set()

        asyncio.run(run())

    def test_failed_sweep_does_not_stop_loop(self) -> None:
        calls: list[int] = []

        class FlakyRegistry:
            def cleanup_expired(self) -> int:
                calls.append(1)
                if len(calls) == 1:
                    raise RuntimeError("database is locked")
                return 3

        app = SimpleNamespace(state=SimpleNamespace(revocations=FlakyRegistry()))

        async def run() -> None:
            task = asyncio.create_task(_revocation_cleanup_loop(app, 0))
            while len(calls) < 2:
                await asyncio.sleep(0.01)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(run())
        assert len(calls) >= 2
