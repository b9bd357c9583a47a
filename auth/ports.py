"""
auth/ports.py -- Capability interfaces the credential services depend on.

Services accept any object satisfying these protocols. IdentityStore in
auth/store.py implements all three store capabilities over SQLAlchemy; tests
may substitute fakes. Digests are opaque strings produced by
auth.hashing.hash_value().
"""

from __future__ import annotations

import uuid
from typing import Optional, Protocol

from auth.models import Identity, ProfileInfo, ProfileUpdate


class CodeStore(Protocol):
    """Hashed confirmation codes, one live row per identity, TTL-evicted."""

    def upsert_code_digest(self, identity_id: uuid.UUID, digest: str, ttl_seconds: int) -> None: ...

    def get_code_digest(self, identity_id: uuid.UUID) -> Optional[str]:
        """Return the live digest, or None if never issued, used, or expired."""
        ...

    def delete_code_digest(self, identity_id: uuid.UUID) -> None: ...

    def purge_expired_codes(self) -> int:
        """Remove rows past their TTL and return how many were removed."""
        ...


class RefreshTokenStore(Protocol):
    """Hashed refresh tokens, one active row per identity."""

    def upsert_refresh_digest(self, identity_id: uuid.UUID, digest: str) -> None: ...

    def get_refresh_digest(self, identity_id: uuid.UUID) -> Optional[str]: ...


class IdentityRepository(Protocol):
    def create_identity(self, email: str) -> Identity:
        """Insert a new identity. Raises IdentityConflictError if the email exists."""
        ...

    def find_identity_by_id(self, identity_id: uuid.UUID) -> Optional[Identity]: ...

    def find_identity_by_email(self, email: str) -> Optional[Identity]: ...

    def confirm_identity(self, identity_id: uuid.UUID) -> None: ...

    def create_profile(self, identity_id: uuid.UUID, profile: ProfileInfo) -> bool:
        """False if the identity is missing or already has a profile."""
        ...

    def update_profile(self, identity_id: uuid.UUID, update: ProfileUpdate) -> bool:
        """Write only the non-None fields. False if there is no profile to change."""
        ...


class EmailSender(Protocol):
    """Outbound email. Raises EmailDispatchError when delivery fails."""

    def send(self, to_email: str, subject: str, body: str) -> None: ...
