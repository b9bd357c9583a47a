"""
auth/tokens.py -- Signed access tokens.

Security design decisions:
  Format: compact JWS, HS256. python-jose's jws layer builds the three
       base64url (unpadded) segments: header {"alg":"HS256","typ":"JWT"},
       payload {"sub","iat","exp"}, and HMAC-SHA256 over "header.payload".
       Signer and verifier are the same service holding one shared secret, so
       no asymmetric keys are involved.

  verify_token() checks the signature only. It does NOT look at
       exp -- callers that gate access on a token must use read_claims(),
       which adds well-formed-claims and expiry checks. The HTTP bearer
       dependency does exactly that.

  Failures never raise: a malformed or tampered token is simply invalid
       (False / None). The HMAC comparison inside jose is constant-time.

  The secret key and lifetime come from an explicit SessionConfig passed to
       TokenSigner. This module never reads global settings.
"""

from __future__ import annotations

import base64
import json
import logging
import time
from typing import Optional

from jose import jws
from jose.constants import ALGORITHMS
from jose.exceptions import JOSEError

from auth.models import AccessTokenClaims
from core.config import SessionConfig

logger = logging.getLogger("identity.auth")

_ALGORITHM = ALGORITHMS.HS256


# ---------------------------------------------------------------------------
# Sign / verify
# ---------------------------------------------------------------------------


def sign_token(subject: str, lifetime_seconds: int, secret_key: str, now: Optional[int] = None) -> str:
    """Return a compact signed token with sub, iat and exp = iat + lifetime_seconds."""
    iat = int(time.time()) if now is None else int(now)
    payload = {"sub": subject, "iat": iat, "exp": iat + lifetime_seconds}
    return jws.sign(payload, secret_key, algorithm=_ALGORITHM)


def verify_token(token: str, secret_key: str) -> bool:
    """Return True if the signature over the first two segments is valid.

    Expiry is not checked here; see read_claims().
    """
    return _verified_payload(token, secret_key) is not None


def read_claims(token: str, secret_key: str, now: Optional[int] = None) -> Optional[AccessTokenClaims]:
    """Verify the signature, parse the claims, and reject expired tokens.

    Returns None on any failure -- callers turn that into a 401.
    """
    payload = _verified_payload(token, secret_key)
    if payload is None:
        return None
    try:
        data = json.loads(payload)
        claims = AccessTokenClaims(sub=str(data["sub"]), iat=int(data["iat"]), exp=int(data["exp"]))
    except (ValueError, TypeError, KeyError):
        return None
    current = int(time.time()) if now is None else int(now)
    if claims.exp <= current:
        return None
    return claims


def _verified_payload(token: str, secret_key: str) -> Optional[bytes]:
    if not token or token.count(".") != 2:
        return None
    if not _is_canonical_b64url(token.rsplit(".", 1)[1]):
        return None
    try:
        return jws.verify(token, secret_key, algorithms=[_ALGORITHM])
    except JOSEError:
        return None
    except (ValueError, TypeError):
        # Undecodable segments that slip past jose's own checks.
        return None


def _is_canonical_b64url(segment: str) -> bool:
    """True only if segment is the exact unpadded encoding of the bytes it decodes to.

    jose's decoder ignores the unused low bits of the final character, so
    32 signature bytes have four spellings. Only the one with zero bits is
    accepted.
    """
    try:
        raw = base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4))
    except ValueError:
        return False
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii") == segment


# ---------------------------------------------------------------------------
# Config-bound signer
# ---------------------------------------------------------------------------


class TokenSigner:
    """Access-token signer bound to the service's secret key and lifetime."""

    def __init__(self, config: SessionConfig) -> None:
        self._secret_key = config.secret_key
        self.lifetime = config.access_token_lifetime

    def sign(self, subject: str, now: Optional[int] = None) -> str:
        return sign_token(subject, self.lifetime, self._secret_key, now=now)

    def verify(self, token: str) -> bool:
        return verify_token(token, self._secret_key)

    def read_claims(self, token: str, now: Optional[int] = None) -> Optional[AccessTokenClaims]:
        return read_claims(token, self._secret_key, now=now)
