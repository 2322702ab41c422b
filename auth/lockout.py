"""
auth/lockout.py -- Per-account brute-force guard for password logins.

States per user: unlocked / locked (lock_until in the future).

  failed password  -> AuthStore.record_failed_login(): one atomic UPDATE that
                      restarts the window if the previous lock expired,
                      otherwise increments and locks at the threshold.
  correct password -> AuthStore.record_successful_login(): counter 0, lock
                      cleared, last_login_at stamped.

The guard is only consulted on the password path. A locked account is refused
BEFORE the password is checked, so attempts during the lock neither extend
it nor reset it, whatever the password.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from auth.models import User
from auth.store import AuthStore
from core.config import Settings
from core.errors import UnauthorizedError

logger = logging.getLogger("authcore.auth.lockout")

LOCKED_MESSAGE = (
    "Your account has been locked due to too many failed login attempts. "
    "Please try again later or reset your password."
)


@dataclass(frozen=True)
class LockoutPolicy:
    max_attempts: int = 5
    lock_duration: timedelta = timedelta(hours=2)

    @classmethod
    def from_settings(cls, settings: Settings) -> "LockoutPolicy":
        return cls(
            max_attempts=settings.max_login_attempts,
            lock_duration=timedelta(seconds=settings.lock_duration_seconds),
        )


class LoginGuard:
    def __init__(self, store: AuthStore, policy: LockoutPolicy) -> None:
        self._store = store
        self._policy = policy

    def ensure_not_locked(self, user: User, now: datetime) -> None:
        """Raise UnauthorizedError(account_locked) while the lock is active."""
        if user.is_locked(now):
            raise UnauthorizedError(LOCKED_MESSAGE, code="account_locked")

    def record_failure(self, user: User, now: datetime) -> User | None:
        """Count a failed attempt. Returns the user as stored after the update."""
        updated = self._store.record_failed_login(user.id, self._policy.max_attempts, self._policy.lock_duration, now)
        if updated is not None and updated.is_locked(now) and not user.is_locked(now):
            logger.warning(
                "Account %s locked until %s after %d failed attempts",
                updated.id,
                updated.lock_until.isoformat(),
                updated.login_attempts,
            )
        return updated

    def record_success(self, user: User, now: datetime) -> None:
        self._store.record_successful_login(user.id, now)
