"""
auth/lockout.py -- Progressive account lockout after repeated failed logins.

States per user:
  Unlocked: lockout_until is NULL or in the past.
  Locked:   lockout_until is in the future. Login is refused without checking
            the password, and further failures neither count nor extend the
            lockout.

The state transitions themselves are single conditional UPDATEs in
CredentialStore; this class only supplies the threshold, the duration and
the clock. It never reads a counter and writes it back.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from auth.errors import AccountLocked
from auth.store import CredentialStore

logger = logging.getLogger("jobboard.auth")


class LockoutPolicy:
    def __init__(self, store: CredentialStore, threshold: int = 5, duration: timedelta = timedelta(minutes=15)) -> None:
        self.store = store
        self.threshold = threshold
        self.duration = duration

    def record_failure(self, user_id: int, now: datetime | None = None) -> bool:
        """Count one failed login. Returns False if the account was already locked."""
        now = now or datetime.now(timezone.utc)
        updated = self.store.record_failed_attempt(user_id, now, self.threshold, now + self.duration)
        if updated:
            user = self.store.get_by_id(user_id)
            if user is not None and user.is_locked(now):
                logger.warning(
                    "Account %d locked after %d failed attempts until %s",
                    user_id,
                    user.failed_login_attempts,
                    user.lockout_until.isoformat(),
                )
        return updated

    def record_success(self, user_id: int, now: datetime | None = None) -> None:
        """Reset the counter. Raises AccountLocked if a lockout is running at `now`."""
        now = now or datetime.now(timezone.utc)
        if not self.store.record_successful_login(user_id, now):
            raise AccountLocked()

    def unlock(self, user_id: int) -> bool:
        """Administrative unlock. Returns False if the user does not exist."""
        unlocked = self.store.clear_lockout(user_id)
        if unlocked:
            logger.info("Account %d unlocked by administrator", user_id)
        return unlocked
