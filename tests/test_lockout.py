"""
Lockout accounting applied through the credential store.
"""

from datetime import timedelta

import pytest

from security.lockout import LockoutPolicy
from tests.conftest import fetch_account


@pytest.fixture
def policy():
    return LockoutPolicy(max_attempts=3, lockout_duration=timedelta(minutes=10))


class TestLockoutPolicy:
    def test_rejects_zero_threshold(self):
        with pytest.raises(ValueError):
            LockoutPolicy(max_attempts=0)

    def test_from_config(self, app):
        policy = LockoutPolicy.from_config(app.config)
        assert policy.max_attempts == 5
        assert policy.lockout_duration == timedelta(minutes=30)

    def test_unlocked_account(self, verified_account, clock, policy):
        assert policy.locked_until(verified_account, clock()) is None


class TestFailureAccounting:
    def test_failures_count_up_then_lock(self, service, verified_account, clock, policy):
        store = service.store
        now = clock()

        assert store.register_failure(verified_account.id, policy, now) == (1, None)
        assert store.register_failure(verified_account.id, policy, now) == (2, None)

        count, locked_until = store.register_failure(verified_account.id, policy, now)
        assert count == 3
        assert locked_until == now + timedelta(minutes=10)
        assert policy.locked_until(fetch_account("a@example.com"), now) == locked_until

    def test_lock_lapses(self, service, verified_account, clock, policy):
        store = service.store
        for _ in range(3):
            store.register_failure(verified_account.id, policy, clock())

        clock.advance(minutes=11)
        assert policy.locked_until(fetch_account("a@example.com"), clock()) is None

    def test_failure_after_lapsed_lock_starts_new_run(self, service, verified_account, clock, policy):
        store = service.store
        for _ in range(3):
            store.register_failure(verified_account.id, policy, clock())

        clock.advance(minutes=11)
        count, locked_until = store.register_failure(verified_account.id, policy, clock())
        assert count == 1
        assert locked_until is None

    def test_complete_login_clears_state(self, service, verified_account, clock, policy):
        store = service.store
        store.register_failure(verified_account.id, policy, clock())
        store.register_failure(verified_account.id, policy, clock())

        assert store.complete_login(verified_account.id, clock())
        store.commit()

        account = fetch_account("a@example.com")
        assert account.failed_login_attempts == 0
        assert account.locked_until is None
        assert account.last_login == clock()

    def test_unlock(self, service, verified_account, clock, policy):
        for _ in range(3):
            service.store.register_failure(verified_account.id, policy, clock())

        assert service.unlock_account("A@Example.com")
        account = fetch_account("a@example.com")
        assert account.failed_login_attempts == 0
        assert account.locked_until is None

    def test_unlock_unknown_email(self, service):
        assert not service.unlock_account("ghost@example.com")
