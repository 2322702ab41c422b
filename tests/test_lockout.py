"""Tests for the brute-force guard: auth/lockout.py and the atomic store update.

Covers:
- exactly 5 failures lock the account for exactly lock_duration
- the 5th response is the same locked message as attempts 6+
- a correct password during the lock is refused and leaves the counter alone
- the lock expires at lock_until (strictly-in-the-future rule)
- a failure after an expired lock starts a fresh window at 1
- success resets counter and lock, stamps last_login_at
- the store update does not depend on the caller's copy of the counter
- threshold and duration come from settings
"""

from __future__ import annotations

import logging
from datetime import timedelta

import pytest

from auth.lockout import LOCKED_MESSAGE, LockoutPolicy, LoginGuard
from auth.models import User
from auth.service import INVALID_CREDENTIALS, AuthService
from core.errors import UnauthorizedError

EMAIL = "alice@example.com"
PASSWORD = "correct-horse-1"


def _fail(service: AuthService, email: str = EMAIL) -> UnauthorizedError:
    with pytest.raises(UnauthorizedError) as exc_info:
        service.login(email, "wrong-password-1")
    return exc_info.value


# ---------------------------------------------------------------------------
# Store-level transitions
# ---------------------------------------------------------------------------


class TestRecordFailedLogin:
    @pytest.fixture
    def user_id(self, store) -> str:
        return store.create_user(User(email="bob@example.com", password_hash="x", is_email_verified=True))

    def test_increments_without_locking_below_threshold(self, store, user_id, clock) -> None:
        for expected in range(1, 5):
            user = store.record_failed_login(user_id, 5, timedelta(hours=2), clock())
            assert user.login_attempts == expected
            assert user.lock_until is None

    def test_locks_at_threshold(self, store, user_id, clock) -> None:
        for _ in range(5):
            user = store.record_failed_login(user_id, 5, timedelta(hours=2), clock())
        assert user.login_attempts == 5
        assert user.lock_until == clock() + timedelta(hours=2)

    def test_further_failures_do_not_extend_lock(self, store, user_id, clock) -> None:
        for _ in range(5):
            store.record_failed_login(user_id, 5, timedelta(hours=2), clock())
        locked_until = store.get_by_id(user_id).lock_until
        clock.advance(minutes=30)
        user = store.record_failed_login(user_id, 5, timedelta(hours=2), clock())
        assert user.lock_until == locked_until

    def test_stale_lock_restarts_window(self, store, user_id, clock) -> None:
        for _ in range(5):
            store.record_failed_login(user_id, 5, timedelta(hours=2), clock())
        clock.advance(hours=2)
        user = store.record_failed_login(user_id, 5, timedelta(hours=2), clock())
        assert user.login_attempts == 1
        assert user.lock_until is None

    def test_unknown_user_returns_none(self, store, clock) -> None:
        assert store.record_failed_login("missing", 5, timedelta(hours=2), clock()) is None

    def test_successful_login_resets_state(self, store, user_id, clock) -> None:
        for _ in range(5):
            store.record_failed_login(user_id, 5, timedelta(hours=2), clock())
        store.record_successful_login(user_id, clock())
        user = store.get_by_id(user_id)
        assert user.login_attempts == 0
        assert user.lock_until is None
        assert user.last_login_at == clock()

    def test_clear_lock_keeps_last_login(self, store, user_id, clock) -> None:
        for _ in range(5):
            store.record_failed_login(user_id, 5, timedelta(hours=2), clock())
        assert store.clear_lock(user_id) is True
        user = store.get_by_id(user_id)
        assert (user.login_attempts, user.lock_until, user.last_login_at) == (0, None, None)


class TestLoginGuard:
    def test_stale_caller_copy_still_locks(self, store, clock) -> None:
        """The guard never writes back a counter it read earlier."""
        uid = store.create_user(User(email="carol@example.com", password_hash="x", is_email_verified=True))
        stale = store.get_by_id(uid)
        guard = LoginGuard(store, LockoutPolicy(max_attempts=5, lock_duration=timedelta(hours=2)))
        for _ in range(5):
            updated = guard.record_failure(stale, clock())
        assert updated.is_locked(clock())

    def test_logs_when_account_becomes_locked(self, store, clock, caplog) -> None:
        uid = store.create_user(User(email="dave@example.com", password_hash="x", is_email_verified=True))
        guard = LoginGuard(store, LockoutPolicy(max_attempts=2, lock_duration=timedelta(minutes=10)))
        user = store.get_by_id(uid)
        with caplog.at_level(logging.WARNING, logger="authcore.auth.lockout"):
            guard.record_failure(user, clock())
            guard.record_failure(user, clock())
        assert any("locked until" in r.getMessage() for r in caplog.records)

    def test_ensure_not_locked_raises_locked_code(self, clock) -> None:
        guard = LoginGuard(store=None, policy=LockoutPolicy())
        user = User(email="e@example.com", lock_until=clock() + timedelta(seconds=1))
        with pytest.raises(UnauthorizedError) as exc_info:
            guard.ensure_not_locked(user, clock())
        assert exc_info.value.code == "account_locked"

    def test_lock_in_the_past_is_not_locked(self, clock) -> None:
        guard = LoginGuard(store=None, policy=LockoutPolicy())
        user = User(email="e@example.com", lock_until=clock() - timedelta(seconds=1))
        guard.ensure_not_locked(user, clock())

    def test_policy_from_settings(self, settings) -> None:
        policy = LockoutPolicy.from_settings(settings.model_copy(update={"max_login_attempts": 3}))
        assert policy.max_attempts == 3
        assert policy.lock_duration == timedelta(seconds=settings.lock_duration_seconds)


# ---------------------------------------------------------------------------
# End-to-end through AuthService.login()
# ---------------------------------------------------------------------------


class TestLoginLockout:
    def test_four_failures_are_plain_invalid_credentials(self, service, verified_user) -> None:
        verified_user(EMAIL)
        for _ in range(4):
            err = _fail(service)
            assert err.message == INVALID_CREDENTIALS

    def test_fifth_failure_reports_lock_like_sixth(self, service, verified_user) -> None:
        verified_user(EMAIL)
        for _ in range(4):
            _fail(service)
        fifth = _fail(service)
        sixth = _fail(service)
        assert fifth.message == LOCKED_MESSAGE
        assert (fifth.message, fifth.code, fifth.status_code) == (sixth.message, sixth.code, sixth.status_code)

    def test_lock_lasts_exactly_the_configured_duration(self, service, store, verified_user, clock, settings) -> None:
        user = verified_user(EMAIL)
        for _ in range(5):
            _fail(service)
        assert store.get_by_id(user.id).lock_until == clock() + timedelta(seconds=settings.lock_duration_seconds)

    def test_correct_password_refused_while_locked(self, service, store, verified_user, clock) -> None:
        user = verified_user(EMAIL)
        for _ in range(5):
            _fail(service)
        clock.advance(minutes=90)
        with pytest.raises(UnauthorizedError) as exc_info:
            service.login(EMAIL, PASSWORD)
        assert exc_info.value.code == "account_locked"
        assert store.get_by_id(user.id).login_attempts == 5

    def test_correct_password_accepted_once_lock_expires(self, service, store, verified_user, clock) -> None:
        user = verified_user(EMAIL)
        for _ in range(5):
            _fail(service)
        clock.advance(hours=2)
        result = service.login(EMAIL, PASSWORD)
        assert result.user.login_attempts == 0
        assert result.user.lock_until is None
        assert store.get_by_id(user.id).last_login_at == clock()

    def test_success_resets_counter(self, service, store, verified_user) -> None:
        user = verified_user(EMAIL)
        for _ in range(3):
            _fail(service)
        service.login(EMAIL, PASSWORD)
        assert store.get_by_id(user.id).login_attempts == 0
        # A fresh window: four more failures still do not lock.
        for _ in range(4):
            assert _fail(service).message == INVALID_CREDENTIALS

    def test_threshold_from_settings(self, settings, store, sender, verifier, clock) -> None:
        strict = settings.model_copy(update={"max_login_attempts": 2})
        service = AuthService.from_settings(strict, store, sender=sender, verifier=verifier, clock=clock)
        service.signup(EMAIL, PASSWORD)
        service.verify_email(sender.last_token(EMAIL, "verify-email"))
        assert _fail(service).message == INVALID_CREDENTIALS
        assert _fail(service).message == LOCKED_MESSAGE
