"""
auth/refresh.py -- Long-lived opaque refresh tokens.

One active token per identity: issue() upserts the digest, so issuing a new
token silently invalidates the previous one. The plaintext leaves this module
exactly once (the return value of issue()); only the bcrypt digest is stored.

validate() never raises. Empty candidates, missing digests and store failures
all read as "invalid" -- the caller answers 403 either way.
"""

from __future__ import annotations

import logging
import uuid

from auth.errors import StorageError
from auth.hashing import digest_matches, hash_value
from auth.models import RefreshToken
from auth.ports import RefreshTokenStore
from core.config import SessionConfig

logger = logging.getLogger("identity.auth")


class RefreshTokenManager:
    def __init__(self, store: RefreshTokenStore, config: SessionConfig) -> None:
        self._store = store
        self._rounds = config.hash_rounds

    def issue(self, identity_id: uuid.UUID) -> RefreshToken:
        """Generate a token, persist its digest, and return the plaintext.

        Raises StorageError if the digest could not be saved.
        """
        token = RefreshToken.generate()
        digest = hash_value(token, rounds=self._rounds)
        self._store.upsert_refresh_digest(identity_id, digest)
        return token

    def validate(self, identity_id: uuid.UUID, candidate: str) -> bool:
        if not candidate:
            return False
        try:
            digest = self._store.get_refresh_digest(identity_id)
        except StorageError:
            logger.warning("Refresh token lookup failed for %s", identity_id)
            return False
        if digest is None:
            return False
        return digest_matches(digest, RefreshToken(candidate))
