"""Typed results returned by the authenticator and the credential flows.

Callers branch on these values instead of catching exceptions; the HTTP
layer is the only place where they are mapped onto status codes.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from .account import Account


class AuthStatus(str, Enum):
    SUCCESS = "success"
    INVALID_CREDENTIALS = "invalid_credentials"
    EMAIL_NOT_CONFIRMED = "email_not_confirmed"
    LOCKED_OUT = "locked_out"


@dataclass(slots=True, frozen=True)
class AuthOutcome:
    """Result of a single authentication attempt."""

    status: AuthStatus
    account: Account | None = None
    locked_until: datetime | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is AuthStatus.SUCCESS

    @classmethod
    def success(cls, account: Account) -> "AuthOutcome":
        return cls(AuthStatus.SUCCESS, account=account)

    @classmethod
    def invalid_credentials(cls) -> "AuthOutcome":
        return cls(AuthStatus.INVALID_CREDENTIALS)

    @classmethod
    def email_not_confirmed(cls) -> "AuthOutcome":
        return cls(AuthStatus.EMAIL_NOT_CONFIRMED)

    @classmethod
    def locked_out(cls, until: datetime) -> "AuthOutcome":
        return cls(AuthStatus.LOCKED_OUT, locked_until=until)


class Rejection(str, Enum):
    """Reasons a credential flow can refuse a request."""

    NOT_FOUND = "not_found"
    EMAIL_TAKEN = "email_taken"
    ALREADY_CONFIRMED = "already_confirmed"
    EMAIL_NOT_CONFIRMED = "email_not_confirmed"
    INVALID_TOKEN = "invalid_token"
    DELIVERY_FAILED = "delivery_failed"


@dataclass(slots=True, frozen=True)
class FlowResult:
    """Success or typed rejection of a credential lifecycle flow.

    ``account`` is populated whenever the flow resolved an account, including
    a registration whose confirmation mail could not be delivered.
    """

    rejection: Rejection | None = None
    message: str = ""
    account: Account | None = None

    @property
    def ok(self) -> bool:
        return self.rejection is None

    @classmethod
    def accepted(cls, message: str = "", account: Account | None = None) -> "FlowResult":
        return cls(None, message, account)

    @classmethod
    def rejected(
        cls, rejection: Rejection, message: str, account: Account | None = None
    ) -> "FlowResult":
        return cls(rejection, message, account)


@dataclass(slots=True, frozen=True)
class SessionToken:
    """Encoded session JWT and its lifetime in seconds."""

    token: str
    expires_in: int


@dataclass(slots=True, frozen=True)
class LoginResult:
    """Authentication outcome plus the session minted on success."""

    outcome: AuthOutcome
    session: SessionToken | None = None
