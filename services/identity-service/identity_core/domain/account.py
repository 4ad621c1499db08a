from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(slots=True)
class Account:
    """Aggregate root for a password-authenticated principal."""

    account_id: str
    username: str
    email: str
    first_name: str
    last_name: str
    password_hash: str
    created_at: datetime
    email_confirmed: bool = False
    failed_login_count: int = 0
    lockout_until: datetime | None = None
    roles: tuple[str, ...] = ()
    claims: dict[str, str] = field(default_factory=dict)

    def is_locked_out(self, now: datetime) -> bool:
        """Return ``True`` while a stored lockout timestamp lies in the future."""
        return self.lockout_until is not None and self.lockout_until > now

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()
