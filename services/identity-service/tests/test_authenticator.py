from __future__ import annotations

import threading
from datetime import timedelta

import pytest

from identity_core.domain.authenticator import Authenticator
from identity_core.domain.outcomes import AuthStatus
from identity_core.security.passwords import verify_password


@pytest.fixture
def authenticator(store, settings, clock) -> Authenticator:
    return Authenticator(store, settings, clock=clock)


def test_unknown_username_is_invalid_credentials(authenticator):
    outcome = authenticator.authenticate("nobody@example.com", "secret1")
    assert outcome.status is AuthStatus.INVALID_CREDENTIALS
    assert outcome.account is None


def test_unconfirmed_account_is_refused_even_with_correct_password(authenticator, make_account, store):
    account = make_account("pending@example.com", confirmed=False)

    outcome = authenticator.authenticate("pending@example.com", "secret1")

    assert outcome.status is AuthStatus.EMAIL_NOT_CONFIRMED
    assert store.find_by_id(account.account_id).failed_login_count == 0


def test_unconfirmed_account_does_not_count_failures(authenticator, make_account, store):
    account = make_account("pending@example.com", confirmed=False)
    for _ in range(5):
        assert authenticator.authenticate("pending@example.com", "wrong").status is AuthStatus.EMAIL_NOT_CONFIRMED
    assert store.find_by_id(account.account_id).failed_login_count == 0


def test_successful_login_returns_account(authenticator, make_account):
    account = make_account()
    outcome = authenticator.authenticate("member@example.com", "secret1")
    assert outcome.succeeded
    assert outcome.account.account_id == account.account_id


def test_username_lookup_ignores_case(authenticator, make_account):
    make_account()
    assert authenticator.authenticate("  Member@Example.COM ", "secret1").succeeded


def test_three_failures_then_success_resets_counter(authenticator, make_account, store):
    account = make_account()

    statuses = [authenticator.authenticate("member@example.com", "wrong").status for _ in range(3)]
    assert store.find_by_id(account.account_id).failed_login_count == 3
    statuses.append(authenticator.authenticate("member@example.com", "secret1").status)

    assert statuses == [
        AuthStatus.INVALID_CREDENTIALS,
        AuthStatus.INVALID_CREDENTIALS,
        AuthStatus.INVALID_CREDENTIALS,
        AuthStatus.SUCCESS,
    ]
    stored = store.find_by_id(account.account_id)
    assert stored.failed_login_count == 0
    assert stored.lockout_until is None


def test_fourth_consecutive_failure_locks_for_a_day(authenticator, make_account, store, clock):
    account = make_account()

    statuses = [authenticator.authenticate("member@example.com", "wrong") for _ in range(4)]

    assert [o.status for o in statuses[:3]] == [AuthStatus.INVALID_CREDENTIALS] * 3
    locked = statuses[3]
    assert locked.status is AuthStatus.LOCKED_OUT
    assert locked.locked_until == clock() + timedelta(hours=24)
    assert store.find_by_id(account.account_id).lockout_until == locked.locked_until


def test_lockout_wins_over_correct_password(authenticator, make_account, clock):
    make_account()
    for _ in range(4):
        authenticator.authenticate("member@example.com", "wrong")

    clock.advance(hours=23, minutes=59)
    outcome = authenticator.authenticate("member@example.com", "secret1")

    assert outcome.status is AuthStatus.LOCKED_OUT
    assert outcome.locked_until > clock()


def test_lockout_expires_after_window(authenticator, make_account, store, clock):
    account = make_account()
    for _ in range(4):
        authenticator.authenticate("member@example.com", "wrong")

    clock.advance(hours=24, seconds=1)
    outcome = authenticator.authenticate("member@example.com", "secret1")

    assert outcome.succeeded
    stored = store.find_by_id(account.account_id)
    assert stored.failed_login_count == 0
    assert stored.lockout_until is None


def test_lockout_is_independent_of_failure_count(authenticator, make_account, store, clock):
    account = make_account()
    store.set_lockout_until(account.account_id, clock() + timedelta(minutes=5))

    outcome = authenticator.authenticate("member@example.com", "secret1")

    assert outcome.status is AuthStatus.LOCKED_OUT
    assert store.find_by_id(account.account_id).failed_login_count == 0


def test_bootstrap_admin_failures_are_not_counted(authenticator, make_account, store):
    admin = make_account("admin@example.com", roles=("Admin", "Member"))

    outcomes = [authenticator.authenticate("admin@example.com", "wrong") for _ in range(10)]

    assert {o.status for o in outcomes} == {AuthStatus.INVALID_CREDENTIALS}
    assert store.find_by_id(admin.account_id).failed_login_count == 0
    assert authenticator.authenticate("admin@example.com", "secret1").succeeded


def test_concurrent_failures_cannot_race_past_threshold(authenticator, make_account, store):
    account = make_account()
    barrier = threading.Barrier(12)
    outcomes = []
    outcomes_lock = threading.Lock()

    def attempt() -> None:
        barrier.wait()
        outcome = authenticator.authenticate("member@example.com", "wrong")
        with outcomes_lock:
            outcomes.append(outcome.status)

    threads = [threading.Thread(target=attempt) for _ in range(12)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert outcomes.count(AuthStatus.INVALID_CREDENTIALS) == 3
    assert outcomes.count(AuthStatus.LOCKED_OUT) == 9
    assert store.find_by_id(account.account_id).lockout_until is not None


def test_lockout_set_during_verification_is_not_erased_by_success(make_account, store, settings, clock):
    account = make_account()
    until = clock() + timedelta(hours=24)

    def verify_while_others_fail(plain: str, hashed: str) -> bool:
        for _ in range(4):
            store.record_failed_login(account.account_id, threshold=3, lockout_until=until)
        return verify_password(plain, hashed)

    authenticator = Authenticator(store, settings, clock=clock, verify=verify_while_others_fail)

    outcome = authenticator.authenticate("member@example.com", "secret1")

    assert outcome.status is AuthStatus.LOCKED_OUT
    assert outcome.locked_until == until
    stored = store.find_by_id(account.account_id)
    assert stored.failed_login_count == 4
    assert stored.lockout_until == until
