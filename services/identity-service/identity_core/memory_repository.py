"""In-memory credential store implementation."""

from __future__ import annotations

import copy
import uuid
from datetime import datetime
from threading import Lock

from .domain.account import Account
from .domain.contracts import LoginFailureState, NewAccount
from .domain.ports import AccountNotFoundError, EmailTakenError


class InMemoryCredentialStore:
    """Thread-safe dict-backed store; every mutation runs under one lock."""

    def __init__(self) -> None:
        """Initialise account storage and the email index."""
        self._accounts: dict[str, Account] = {}
        self._by_email: dict[str, str] = {}
        self._lock = Lock()

    def _require(self, account_id: str) -> Account:
        account = self._accounts.get(account_id)
        if account is None:
            raise AccountNotFoundError(account_id)
        return account

    def find_by_id(self, account_id: str) -> Account | None:
        with self._lock:
            account = self._accounts.get(account_id)
            return copy.deepcopy(account) if account else None

    def find_by_username(self, username: str) -> Account | None:
        username = username.lower()
        with self._lock:
            for account in self._accounts.values():
                if account.username == username:
                    return copy.deepcopy(account)
        return None

    def find_by_email(self, email: str) -> Account | None:
        with self._lock:
            account_id = self._by_email.get(email.lower())
            return copy.deepcopy(self._accounts[account_id]) if account_id else None

    def email_exists(self, email: str) -> bool:
        with self._lock:
            return email.lower() in self._by_email

    def create_account(self, payload: NewAccount) -> Account:
        account = Account(
            account_id=str(uuid.uuid4()),
            username=payload.username,
            email=payload.email,
            first_name=payload.first_name,
            last_name=payload.last_name,
            password_hash=payload.password_hash,
            created_at=payload.created_at,
            email_confirmed=payload.email_confirmed,
            claims=dict(payload.claims),
        )
        with self._lock:
            if payload.email.lower() in self._by_email:
                raise EmailTakenError(payload.email)
            self._accounts[account.account_id] = account
            self._by_email[payload.email.lower()] = account.account_id
            return copy.deepcopy(account)

    def assign_role(self, account_id: str, role: str) -> None:
        with self._lock:
            account = self._require(account_id)
            if role not in account.roles:
                account.roles = (*account.roles, role)

    def set_email_confirmed(self, account_id: str, confirmed: bool = True) -> None:
        with self._lock:
            self._require(account_id).email_confirmed = confirmed

    def record_failed_login(
        self, account_id: str, *, threshold: int, lockout_until: datetime
    ) -> LoginFailureState:
        with self._lock:
            account = self._require(account_id)
            account.failed_login_count += 1
            if account.failed_login_count > threshold:
                account.lockout_until = lockout_until
            return LoginFailureState(account.failed_login_count, account.lockout_until)

    def reset_failed_login_count(self, account_id: str, *, now: datetime) -> LoginFailureState:
        with self._lock:
            account = self._require(account_id)
            if not account.is_locked_out(now):
                account.failed_login_count = 0
                account.lockout_until = None
            return LoginFailureState(account.failed_login_count, account.lockout_until)

    def set_lockout_until(self, account_id: str, until: datetime | None) -> None:
        with self._lock:
            self._require(account_id).lockout_until = until

    def set_password_hash(self, account_id: str, password_hash: str) -> None:
        with self._lock:
            self._require(account_id).password_hash = password_hash
