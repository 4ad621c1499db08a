"""Domain-level request contracts shared by multiple layers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class TokenPurpose(str, Enum):
    """What a single-use token may be redeemed for."""

    EMAIL_CONFIRMATION = "email-confirmation"
    PASSWORD_RESET = "password-reset"


@dataclass(slots=True)
class RegisterAccountInput:
    """Inputs accepted when a visitor signs up."""

    first_name: str
    last_name: str
    email: str
    password: str


@dataclass(slots=True)
class NewAccount:
    """Normalised values persisted by ``CredentialStore.create_account``."""

    username: str
    email: str
    first_name: str
    last_name: str
    password_hash: str
    created_at: datetime
    email_confirmed: bool = False
    claims: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class LoginFailureState:
    """Failure counter and lockout timestamp after an atomic failed-login update."""

    failed_login_count: int
    lockout_until: datetime | None


@dataclass(slots=True, frozen=True)
class EmailMessage:
    """A composed notification ready to hand to a dispatcher."""

    to_address: str
    subject: str
    body: str
    is_html: bool = True
