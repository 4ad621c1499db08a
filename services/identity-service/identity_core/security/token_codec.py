"""URL-safe transport encoding for single-use tokens."""

from __future__ import annotations

import base64
import binascii
import logging

from ..domain.account import Account
from ..domain.contracts import TokenPurpose
from ..domain.outcomes import FlowResult, Rejection
from ..domain.ports import TokenProvider

logger = logging.getLogger(__name__)

INVALID_TOKEN_MESSAGE = "Invalid token. Please try again"


def encode_token(raw: str) -> str:
    """Encode ``raw`` as unpadded URL-safe base64 text."""
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii").rstrip("=")


def decode_token(encoded: str) -> str:
    """Reverse :func:`encode_token`.

    Raises
    ------
    ValueError
        When ``encoded`` is not strict URL-safe base64 of UTF-8 text.
    """
    text = encoded.strip()
    if not text:
        raise ValueError("empty token")
    padded = text + "=" * (-len(text) % 4)
    try:
        raw = base64.b64decode(padded.encode("ascii"), altchars=b"-_", validate=True)
        return raw.decode("utf-8")
    except (binascii.Error, UnicodeError) as exc:
        raise ValueError("malformed token") from exc


class TokenCodec:
    """Wraps a :class:`TokenProvider` so tokens can travel inside links."""

    def __init__(self, provider: TokenProvider) -> None:
        self._provider = provider

    def generate(self, purpose: TokenPurpose, account: Account) -> str:
        """Request a secret for ``purpose`` and return it encoded for a URL."""
        return encode_token(self._provider.issue_secret(purpose, account))

    def validate(self, purpose: TokenPurpose, account: Account, encoded_token: str) -> FlowResult:
        """Check ``encoded_token`` for ``purpose``; every failure is ``INVALID_TOKEN``."""
        try:
            raw = decode_token(encoded_token)
        except ValueError:
            logger.warning("could not decode %s token for account %s", purpose.value, account.account_id)
            return FlowResult.rejected(Rejection.INVALID_TOKEN, INVALID_TOKEN_MESSAGE)

        try:
            verified = self._provider.verify_secret(purpose, account, raw)
        except Exception:
            logger.exception("token provider failed verifying %s token", purpose.value)
            verified = False

        if not verified:
            return FlowResult.rejected(Rejection.INVALID_TOKEN, INVALID_TOKEN_MESSAGE)
        return FlowResult.accepted()
