"""
auth/models.py -- Domain dataclasses for identities and credentials.

Pattern: Data class. Dataclasses own the domain shape; stores and services do
the work. The only logic here is construction-time validation and the
canonical byte encoding the hash primitive consumes (to_bytes()).

Credential value types:
  ConfirmationCode -- 4-digit int drawn from the fast non-crypto RNG. It is
      single-use and lives 5 minutes, so secret-grade entropy is not required.
  RefreshToken     -- 48 bytes from secrets, URL-safe base64 without padding
      (64 printable chars). Shown to the caller once, persisted only hashed.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import random
import secrets
import uuid
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Optional

from auth.errors import EmptyTokenError, InvalidCodeError

CODE_MIN = 1000
CODE_MAX = 9999
REFRESH_TOKEN_BYTES = 48


@dataclass
class ProfileInfo:
    """User-facing profile fields. Username is unique across identities."""

    first_name: str
    username: str
    last_name: Optional[str] = None


@dataclass(frozen=True)
class ProfileUpdate:
    """Partial profile change. None means "leave this field as it is"."""

    first_name: Optional[str] = None
    username: Optional[str] = None
    last_name: Optional[str] = None

    def changes(self) -> dict[str, str]:
        return {k: v for k, v in asdict(self).items() if v is not None}

    def is_empty(self) -> bool:
        return not self.changes()


@dataclass
class Identity:
    """The durable user record, keyed by UUID and unique email.

    is_confirmed flips to True the first time a confirmation code verifies.
    profile stays None until the profile routes populate it.
    """

    id: uuid.UUID
    email: str
    is_confirmed: bool = False
    profile: Optional[ProfileInfo] = None
    created_at: Optional[str] = None


@dataclass(frozen=True)
class ConfirmationCode:
    value: int

    @classmethod
    def generate(cls) -> ConfirmationCode:
        return cls(random.randint(CODE_MIN, CODE_MAX))  # noqa: S311

    @classmethod
    def from_int(cls, value: object) -> ConfirmationCode:
        """Validate an untrusted candidate. Raises InvalidCodeError when out of range."""
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidCodeError()
        if value < CODE_MIN or value > CODE_MAX:
            raise InvalidCodeError()
        return cls(value)

    def to_bytes(self) -> bytes:
        return str(self.value).encode("ascii")

    def __str__(self) -> str:
        return str(self.value)


@dataclass(frozen=True)
class RefreshToken:
    value: str

    @classmethod
    def generate(cls) -> RefreshToken:
        # token_urlsafe strips the "=" padding; 48 bytes encode to exactly 64 chars.
        return cls(secrets.token_urlsafe(REFRESH_TOKEN_BYTES))

    @classmethod
    def from_string(cls, value: str) -> RefreshToken:
        if not value:
            raise EmptyTokenError()
        return cls(value)

    def to_bytes(self) -> bytes:
        return self.value.encode("utf-8")

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class AccessTokenClaims:
    sub: str
    iat: int
    exp: int


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: RefreshToken


@dataclass(frozen=True)
class AuthenticationResult:
    identity_id: uuid.UUID
    created: bool  # True when this call created the identity


class CodeOutcome(str, Enum):
    CONFIRMED = "confirmed"
    MISMATCH = "mismatch"
    NOT_FOUND = "not_found"
