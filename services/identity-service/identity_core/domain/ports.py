"""Collaborator interfaces consumed by the authentication core.

The core only talks to persistence, token secrets and mail delivery through
these protocols, so each can be swapped for an in-memory fake.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from .account import Account
from .contracts import LoginFailureState, NewAccount, TokenPurpose


class AccountNotFoundError(LookupError):
    """Raised by store mutators when the targeted account does not exist."""

    def __init__(self, account_id: str) -> None:
        super().__init__(f"account {account_id} not found")
        self.account_id = account_id


class EmailTakenError(ValueError):
    """Raised by ``create_account`` when another account already owns the email."""

    def __init__(self, email: str) -> None:
        super().__init__(f"email {email} already registered")
        self.email = email


class CredentialStore(Protocol):
    """Account persistence.

    Lookups return ``None`` for a missing account; mutators raise
    :class:`AccountNotFoundError`.
    """

    def find_by_username(self, username: str) -> Account | None: ...

    def find_by_email(self, email: str) -> Account | None: ...

    def find_by_id(self, account_id: str) -> Account | None: ...

    def email_exists(self, email: str) -> bool: ...

    def create_account(self, payload: NewAccount) -> Account:
        """Persist a new account; raises :class:`EmailTakenError` on a duplicate email."""
        ...

    def assign_role(self, account_id: str, role: str) -> None: ...

    def set_email_confirmed(self, account_id: str, confirmed: bool = True) -> None: ...

    def record_failed_login(
        self, account_id: str, *, threshold: int, lockout_until: datetime
    ) -> LoginFailureState:
        """Increment the failure counter and, when the new count exceeds
        ``threshold``, store ``lockout_until``; both as one atomic step."""
        ...

    def reset_failed_login_count(self, account_id: str, *, now: datetime) -> LoginFailureState:
        """Zero the failure counter and clear the lockout unless one is still
        active at ``now``; returns the stored state after the attempt."""
        ...

    def set_lockout_until(self, account_id: str, until: datetime | None) -> None: ...

    def set_password_hash(self, account_id: str, password_hash: str) -> None: ...


class TokenProvider(Protocol):
    """Issues and verifies purpose-bound secrets; owns their validity window."""

    def issue_secret(self, purpose: TokenPurpose, account: Account) -> str: ...

    def verify_secret(self, purpose: TokenPurpose, account: Account, secret: str) -> bool: ...


class NotificationDispatcher(Protocol):
    """Outbound mail transport. May return ``False`` or raise on failure."""

    def send(self, to_address: str, subject: str, html_body: str, is_html: bool = True) -> bool: ...
