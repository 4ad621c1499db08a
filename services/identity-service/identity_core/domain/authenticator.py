"""Password authentication with brute-force lockout."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable

from ..config import Settings
from ..security.passwords import hash_password, verify_password
from ..security.tokens import utc_now
from .outcomes import AuthOutcome
from .ports import CredentialStore

logger = logging.getLogger(__name__)


class Authenticator:
    """Decides login attempts and maintains the per-account failure counter.

    The ordering matters: confirmation is checked before the password, and an
    active lockout wins over a correct password. Only the bootstrap
    administrator is exempt from counting failures.
    """

    def __init__(
        self,
        store: CredentialStore,
        settings: Settings,
        clock: Callable[[], datetime] = utc_now,
        verify: Callable[[str, str], bool] = verify_password,
    ) -> None:
        self._store = store
        self._threshold = settings.lockout_threshold
        self._lockout_duration = timedelta(seconds=settings.lockout_duration_seconds)
        self._admin_username = settings.bootstrap_admin_username.lower()
        self._clock = clock
        self._verify = verify
        # checked for unknown usernames
        self._dummy_hash = hash_password("identity-timing-equaliser", rounds=settings.bcrypt_rounds)

    def authenticate(self, username: str, password: str) -> AuthOutcome:
        account = self._store.find_by_username(username.strip().lower())
        if account is None:
            self._verify(password, self._dummy_hash)
            return AuthOutcome.invalid_credentials()

        if not account.email_confirmed:
            return AuthOutcome.email_not_confirmed()

        verified = self._verify(password, account.password_hash)
        now = self._clock()
        if account.is_locked_out(now):
            return AuthOutcome.locked_out(account.lockout_until)

        if not verified:
            return self._register_failure(account.account_id, account.username, now)

        # refused when a concurrent failure locked the account during verify
        state = self._store.reset_failed_login_count(account.account_id, now=now)
        if state.lockout_until is not None and state.lockout_until > now:
            return AuthOutcome.locked_out(state.lockout_until)
        account.failed_login_count = 0
        account.lockout_until = None
        return AuthOutcome.success(account)

    def _register_failure(self, account_id: str, username: str, now: datetime) -> AuthOutcome:
        if username == self._admin_username:
            return AuthOutcome.invalid_credentials()

        state = self._store.record_failed_login(
            account_id,
            threshold=self._threshold,
            lockout_until=now + self._lockout_duration,
        )
        if state.lockout_until is not None and state.lockout_until > now:
            logger.info(
                "account %s locked until %s after %d failed logins",
                account_id,
                state.lockout_until.isoformat(),
                state.failed_login_count,
            )
            return AuthOutcome.locked_out(state.lockout_until)
        return AuthOutcome.invalid_credentials()
