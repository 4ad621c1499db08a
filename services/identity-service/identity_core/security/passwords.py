"""bcrypt password hashing used for account credentials."""

from __future__ import annotations

import bcrypt

# bcrypt only reads the first 72 bytes; newer releases raise on longer input.
_MAX_PASSWORD_BYTES = 72


def _encode(plain: str) -> bytes:
    return plain.encode("utf-8")[:_MAX_PASSWORD_BYTES]


def hash_password(plain: str, *, rounds: int = 12) -> str:
    """Return a bcrypt hash of ``plain`` using the given cost factor."""
    return bcrypt.hashpw(_encode(plain), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return ``True`` if the plaintext password matches the bcrypt hash.

    A malformed stored hash counts as a mismatch.
    """
    try:
        return bcrypt.checkpw(_encode(plain), hashed.encode("utf-8"))
    except ValueError:
        return False
