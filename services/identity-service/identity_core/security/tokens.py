"""Issuing and validating session JWTs for authenticated accounts."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable

import jwt

from ..config import Settings
from ..domain.account import Account
from ..domain.outcomes import SessionToken

_ALGORITHM = "HS256"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SessionIssuer:
    """Mints signed, time-bounded session tokens.

    Parameters
    ----------
    settings:
        Supplies the signing secret, the issuer name and the token TTL.
    clock:
        Returns the current UTC time; tokens are deterministic for a fixed clock.
    """

    def __init__(self, settings: Settings, clock: Callable[[], datetime] = utc_now) -> None:
        self._secret = settings.jwt_secret
        self._issuer = settings.jwt_issuer
        self._ttl_seconds = settings.jwt_ttl_seconds
        self._clock = clock

    def issue(self, account: Account) -> SessionToken:
        """Create a signed JWT representing ``account``.

        The payload carries the account id as ``sub``, the name claims, one
        ``roles`` entry per role held and any stored account claims.
        """
        now = int(self._clock().timestamp())
        payload: dict[str, Any] = dict(account.claims)
        payload.update(
            {
                "iss": self._issuer,
                "sub": account.account_id,
                "email": account.email,
                "given_name": account.first_name,
                "family_name": account.last_name,
                "name": account.username,
                "roles": list(account.roles),
                "iat": now,
                "exp": now + self._ttl_seconds,
            }
        )
        token = jwt.encode(payload, self._secret, algorithm=_ALGORITHM)
        return SessionToken(token=token, expires_in=self._ttl_seconds)

    def decode(self, token: str) -> dict[str, Any]:
        """Decode and verify a session JWT returning its payload.

        Raises
        ------
        jwt.PyJWTError
            Propagated when the token is invalid, expired, or signed by another issuer.
        """
        return jwt.decode(
            token,
            self._secret,
            algorithms=[_ALGORITHM],
            issuer=self._issuer,
            options={"require": ["exp", "iss", "sub"]},
        )
