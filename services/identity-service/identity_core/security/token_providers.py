"""Backends that issue and verify purpose-bound single-use secrets."""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta
from typing import Any, Callable, Final

import jwt
from redis import Redis
from redis.exceptions import ResponseError

from ..config import Settings
from ..domain.account import Account
from ..domain.contracts import TokenPurpose
from .tokens import utc_now

logger = logging.getLogger(__name__)

_ALGORITHM = "HS256"


def _lifetimes(settings: Settings) -> dict[TokenPurpose, int]:
    return {
        TokenPurpose.EMAIL_CONFIRMATION: settings.confirmation_token_ttl_seconds,
        TokenPurpose.PASSWORD_RESET: settings.reset_token_ttl_seconds,
    }


def security_stamp(account: Account) -> str:
    """Fingerprint of the account state a single-use token is bound to.

    Confirming the email or replacing the password changes the stamp, which
    invalidates every token issued before the change.
    """
    material = "|".join(
        [account.account_id, account.email, account.password_hash, str(account.email_confirmed)]
    )
    return hashlib.sha256(material.encode("utf-8")).hexdigest()[:32]


class SignedTokenProvider:
    """Stateless provider issuing signed JWTs bound to purpose and security stamp."""

    def __init__(self, settings: Settings, clock: Callable[[], datetime] = utc_now) -> None:
        self._secret = settings.jwt_secret
        self._issuer = settings.jwt_issuer
        self._lifetimes = _lifetimes(settings)
        self._clock = clock

    def issue_secret(self, purpose: TokenPurpose, account: Account) -> str:
        now = self._clock()
        payload: dict[str, Any] = {
            "iss": self._issuer,
            "aud": purpose.value,
            "sub": account.account_id,
            "stamp": security_stamp(account),
            "nonce": secrets.token_urlsafe(8),
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=self._lifetimes[purpose])).timestamp()),
        }
        return jwt.encode(payload, self._secret, algorithm=_ALGORITHM)

    def verify_secret(self, purpose: TokenPurpose, account: Account, secret: str) -> bool:
        try:
            claims = jwt.decode(
                secret,
                self._secret,
                algorithms=[_ALGORITHM],
                audience=purpose.value,
                issuer=self._issuer,
                # expiry is checked against the injected clock below
                options={"verify_exp": False, "verify_iat": False, "require": ["exp", "sub", "aud"]},
            )
        except jwt.PyJWTError as exc:
            logger.info("rejected %s token: %s", purpose.value, exc)
            return False

        if int(claims["exp"]) <= int(self._clock().timestamp()):
            logger.info("rejected expired %s token for account %s", purpose.value, account.account_id)
            return False
        if claims["sub"] != account.account_id:
            return False
        return hmac.compare_digest(str(claims.get("stamp", "")), security_stamp(account))


class RedisTokenProvider:
    """Provider storing digests of random secrets in Redis; each secret verifies once."""

    _LUA_SCRIPT: Final[str] = """
    local stored = redis.call('GET', KEYS[1])
    if stored and stored == ARGV[1] then
        redis.call('DEL', KEYS[1])
        return 1
    end
    return 0
    """

    def __init__(
        self,
        client: Redis,
        settings: Settings,
        *,
        key_prefix: str = "identity:token",
    ) -> None:
        """Initialise the Redis client, per-purpose lifetimes, and Lua script cache."""
        self._client = client
        self._lifetimes = _lifetimes(settings)
        self._key_prefix = key_prefix
        self._script = client.register_script(self._LUA_SCRIPT)

    def _key(self, purpose: TokenPurpose, account: Account) -> str:
        return f"{self._key_prefix}:{purpose.value}:{account.account_id}"

    @staticmethod
    def _digest(secret: str) -> str:
        return hashlib.sha256(secret.encode("utf-8")).hexdigest()

    def issue_secret(self, purpose: TokenPurpose, account: Account) -> str:
        """Store a fresh secret for the account, replacing any earlier one for the purpose."""
        secret = secrets.token_urlsafe(32)
        self._client.set(self._key(purpose, account), self._digest(secret), ex=self._lifetimes[purpose])
        return secret

    def verify_secret(self, purpose: TokenPurpose, account: Account, secret: str) -> bool:
        """Return ``True`` and consume the stored secret when ``secret`` matches it."""
        redis_key = self._key(purpose, account)
        digest = self._digest(secret)
        try:
            result = self._script(keys=[redis_key], args=[digest])
            return int(result) == 1
        except ResponseError as exc:
            if "unknown command" in str(exc).lower():
                return self._verify_fallback(redis_key, digest)
            raise

    def _verify_fallback(self, redis_key: str, digest: str) -> bool:
        """Fallback used when the server cannot run Lua scripts."""
        stored = self._client.get(redis_key)
        if stored is None:
            return False
        if isinstance(stored, bytes):
            stored = stored.decode("utf-8")
        if not hmac.compare_digest(stored, digest):
            return False
        self._client.delete(redis_key)
        return True
