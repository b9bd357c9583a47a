"""
auth/service.py -- Session issuance: the passwordless login state machine.

Per-identity states are not stored as such; they follow from store contents:

  Unverified     identity row exists, no live code
  CodeIssued     a live code digest exists (authenticate() was called)
  SessionActive  a code was confirmed; tokens may be minted and refreshed

Transitions (SessionService methods):
  authenticate(email)          find-or-create identity, issue code, email it
  check_code(id, code)         verify and consume the code, mark confirmed
  get_tokens(id)               mint refresh + access token (the only place both
                               are minted together)
  refresh(id, refresh_token)   mint a new access token; the refresh token is
                               NOT rotated

There is no logout. A later get_tokens() overwrites the stored refresh digest,
which ends the previous session.

No in-process locking. Concurrent calls for one identity race at the store,
last writer wins.

Plaintext codes and tokens exist only on the stack of a single call. They
are never logged.
"""

from __future__ import annotations

import logging
import re
import time
import uuid
from collections.abc import Callable

from auth.codes import ConfirmationCodeEngine
from auth.errors import (
    CodeMismatchError,
    CodeNotFoundError,
    IdentityConflictError,
    IdentityNotFoundError,
    InvalidEmailError,
    InvalidRefreshTokenError,
    ProfileExistsError,
    ProfileNotFoundError,
    StorageError,
)
from auth.models import (
    AuthenticationResult,
    CodeOutcome,
    Identity,
    ProfileInfo,
    ProfileUpdate,
    RefreshToken,
    TokenPair,
)
from auth.ports import EmailSender, IdentityRepository
from auth.refresh import RefreshTokenManager
from auth.tokens import TokenSigner

logger = logging.getLogger("identity.auth")

EMAIL_PATTERN = r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$"
_EMAIL_RE = re.compile(EMAIL_PATTERN)

CODE_EMAIL_SUBJECT = "Your confirmation code"


def normalize_email(email: str) -> str:
    """Strip surrounding whitespace and validate. Raises InvalidEmailError."""
    candidate = (email or "").strip()
    if len(candidate) > 320 or not _EMAIL_RE.match(candidate):
        raise InvalidEmailError()
    return candidate


class SessionService:
    """Orchestrates identities, codes and tokens for the HTTP layer.

    Every collaborator is injected; nothing reads global settings. clock
    supplies the issued-at time for access tokens.
    """

    def __init__(
        self,
        identities: IdentityRepository,
        codes: ConfirmationCodeEngine,
        refresh_tokens: RefreshTokenManager,
        signer: TokenSigner,
        email_sender: EmailSender,
        code_ttl: int = 300,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._identities = identities
        self._codes = codes
        self._refresh_tokens = refresh_tokens
        self._signer = signer
        self._email_sender = email_sender
        self._code_ttl = code_ttl
        self._clock = clock

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def authenticate(self, email: str) -> AuthenticationResult:
        """Start a login for email: find or create the identity, then email a code.

        Raises:
            InvalidEmailError:  email is malformed (no I/O performed).
            StorageError:       identity lookup/creation or code persistence failed.
            EmailDispatchError: the code was stored but could not be delivered.
        """
        address = normalize_email(email)
        identity, created = self._find_or_create(address)

        code = self._codes.issue(identity.id)
        body = (
            f"Confirmation code: {code}\n\n"
            f"The code expires in {max(self._code_ttl // 60, 1)} minutes. "
            "If you did not try to sign in, you can ignore this email.\n"
        )
        self._email_sender.send(identity.email, CODE_EMAIL_SUBJECT, body)

        logger.info("Confirmation code sent for identity %s (new=%s)", identity.id, created)
        return AuthenticationResult(identity_id=identity.id, created=created)

    def check_code(self, identity_id: uuid.UUID, code: object) -> CodeOutcome:
        """Verify and consume a confirmation code.

        Returns CodeOutcome.CONFIRMED on success. Raises InvalidCodeError for an
        out-of-range candidate, CodeNotFoundError when no live code exists and
        CodeMismatchError when the code is wrong.
        """
        outcome = self._codes.verify(identity_id, code)
        if outcome is CodeOutcome.NOT_FOUND:
            raise CodeNotFoundError()
        if outcome is CodeOutcome.MISMATCH:
            raise CodeMismatchError()

        try:
            self._identities.confirm_identity(identity_id)
        except StorageError:
            logger.warning("Code confirmed for %s but the confirmed flag was not saved", identity_id)
        logger.info("Identity %s confirmed a code", identity_id)
        return outcome

    def get_tokens(self, identity_id: uuid.UUID) -> TokenPair:
        """Mint a new refresh token and access token for an existing identity.

        The new refresh token replaces the stored one, so earlier refresh
        tokens stop validating. is_confirmed is intentionally not checked:
        any existing identity may be issued tokens.
        """
        self.get_identity(identity_id)
        refresh_token = self._refresh_tokens.issue(identity_id)
        access_token = self._signer.sign(str(identity_id), now=int(self._clock()))
        logger.info("Issued token pair for identity %s", identity_id)
        return TokenPair(access_token=access_token, refresh_token=refresh_token)

    def refresh(self, identity_id: uuid.UUID, refresh_token: str) -> str:
        """Return a new access token if refresh_token is the identity's active one.

        Raises EmptyTokenError (no I/O), IdentityNotFoundError, or
        InvalidRefreshTokenError. Like get_tokens(), is_confirmed is not checked.
        """
        candidate = RefreshToken.from_string(refresh_token)
        self.get_identity(identity_id)
        if not self._refresh_tokens.validate(identity_id, candidate.value):
            logger.info("Rejected refresh token for identity %s", identity_id)
            raise InvalidRefreshTokenError()
        return self._signer.sign(str(identity_id), now=int(self._clock()))

    # ------------------------------------------------------------------
    # Identity / profile
    # ------------------------------------------------------------------

    def get_identity(self, identity_id: uuid.UUID) -> Identity:
        identity = self._identities.find_identity_by_id(identity_id)
        if identity is None:
            raise IdentityNotFoundError()
        return identity

    def get_profile(self, identity_id: uuid.UUID) -> ProfileInfo:
        identity = self.get_identity(identity_id)
        if identity.profile is None:
            raise ProfileNotFoundError()
        return identity.profile

    def create_profile(self, identity_id: uuid.UUID, profile: ProfileInfo) -> ProfileInfo:
        """Attach a first profile to the identity.

        Raises IdentityNotFoundError, ProfileExistsError if one is already set,
        or UsernameTakenError on a duplicate username.
        """
        if not self._identities.create_profile(identity_id, profile):
            self.get_identity(identity_id)
            raise ProfileExistsError()
        logger.info("Created profile for identity %s", identity_id)
        return profile

    def update_profile(self, identity_id: uuid.UUID, update: ProfileUpdate) -> ProfileInfo:
        """Change only the fields set on update and return the resulting profile.

        Raises IdentityNotFoundError, ProfileNotFoundError, or UsernameTakenError.
        """
        if not update.is_empty():
            self._identities.update_profile(identity_id, update)
        return self.get_profile(identity_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _find_or_create(self, email: str) -> tuple[Identity, bool]:
        identity = self._identities.find_identity_by_email(email)
        if identity is not None:
            return identity, False
        try:
            return self._identities.create_identity(email), True
        except IdentityConflictError:
            # A concurrent request registered the email first; use its row.
            identity = self._identities.find_identity_by_email(email)
            if identity is None:
                raise
            return identity, False
