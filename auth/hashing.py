"""
auth/hashing.py -- One-way hash primitive for secrets kept at rest.

bcrypt, used directly (no passlib wrapper). Confirmation codes have only
9000 possible values, so a fast hash of one would fall to a trivial offline
search if the store leaked. bcrypt's per-digest salt and cost factor make
each guess expensive. Refresh tokens go through the same function so there
is a single hashing path.

Any value exposing to_bytes() can be hashed (ConfirmationCode, RefreshToken).
Empty encodings are rejected at hash time instead of producing a digest of
nothing.

bcrypt only reads the first 72 bytes of its input. Both credential types
encode to at most 64 bytes.
"""

from __future__ import annotations

from typing import Protocol

import bcrypt

from auth.errors import EmptyInputError

DEFAULT_ROUNDS = 12


class Encodable(Protocol):
    def to_bytes(self) -> bytes: ...


def hash_value(value: Encodable, rounds: int = DEFAULT_ROUNDS) -> str:
    """Return a salted bcrypt digest of value.to_bytes().

    Raises EmptyInputError if the encoding is empty.
    """
    raw = value.to_bytes()
    if not raw:
        raise EmptyInputError()
    return bcrypt.hashpw(raw, bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def digest_matches(digest: str, value: Encodable) -> bool:
    """Return True if value produced digest.

    bcrypt.checkpw compares in constant time. A malformed digest or an empty
    candidate is a mismatch, never an exception.
    """
    raw = value.to_bytes()
    if not raw or not digest:
        return False
    try:
        return bcrypt.checkpw(raw, digest.encode("utf-8"))
    except ValueError:
        return False
