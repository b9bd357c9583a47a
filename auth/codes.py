"""
auth/codes.py -- Single-use email confirmation codes.

Lifecycle of a code:
  issue()   draws a 4-digit value, stores only its bcrypt digest (upsert, so a
            new request replaces any earlier live code) and hands the
            plaintext back once for email delivery.
  verify()  compares a candidate against the stored digest. A match deletes
            the digest, so the same code cannot confirm twice. The comparison
            is the point of no return: a failed delete is logged, not undone.
  expiry    the store hides rows past their TTL; expired and never-issued
            codes are both reported as NOT_FOUND.

Candidates outside [1000, 9999] raise InvalidCodeError before the store is
touched.
"""

from __future__ import annotations

import logging
import uuid

from auth.errors import StorageError
from auth.hashing import digest_matches, hash_value
from auth.models import CodeOutcome, ConfirmationCode
from auth.ports import CodeStore
from core.config import SessionConfig

logger = logging.getLogger("identity.auth")


class ConfirmationCodeEngine:
    def __init__(self, store: CodeStore, config: SessionConfig) -> None:
        self._store = store
        self._ttl = config.code_ttl
        self._rounds = config.hash_rounds

    def issue(self, identity_id: uuid.UUID) -> ConfirmationCode:
        """Create, hash and persist a new code. Returns the plaintext exactly once.

        Raises StorageError if the digest could not be saved; in that case no
        code is considered issued.
        """
        code = ConfirmationCode.generate()
        digest = hash_value(code, rounds=self._rounds)
        self._store.upsert_code_digest(identity_id, digest, self._ttl)
        return code

    def verify(self, identity_id: uuid.UUID, candidate: object) -> CodeOutcome:
        code = ConfirmationCode.from_int(candidate)

        digest = self._store.get_code_digest(identity_id)
        if digest is None:
            return CodeOutcome.NOT_FOUND
        if not digest_matches(digest, code):
            return CodeOutcome.MISMATCH

        try:
            self._store.delete_code_digest(identity_id)
        except StorageError:
            logger.warning("Confirmed code for %s but could not delete its digest", identity_id)
        return CodeOutcome.CONFIRMED
