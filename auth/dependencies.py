"""
auth/dependencies.py -- FastAPI Depends() helpers for access-token authentication.

Access tokens arrive as "Authorization: Bearer <token>". The signer on
app.state verifies the signature AND the exp claim (read_claims); a bare
signature check would accept expired tokens.

try_get_current_identity_id() is the soft variant (returns None on failure).
get_current_identity_id() wraps it and raises HTTP 401 if unauthenticated.

Layer rule: may import from fastapi because this module is part of the
FastAPI dependency injection system. No imports from api/.
"""

from __future__ import annotations

import uuid

from fastapi import HTTPException, Request

from auth.tokens import TokenSigner


def try_get_current_identity_id(request: Request) -> uuid.UUID | None:
    """Return the identity id carried by a valid, unexpired bearer token, or None."""
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    token = auth_header[7:].strip()

    signer: TokenSigner = request.app.state.signer
    claims = signer.read_claims(token)
    if claims is None:
        return None
    try:
        return uuid.UUID(claims.sub)
    except ValueError:
        return None


def get_current_identity_id(request: Request) -> uuid.UUID:
    """Require a valid bearer access token. Raises HTTP 401 otherwise."""
    identity_id = try_get_current_identity_id(request)
    if identity_id is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "not_authenticated", "message": "Valid access token required."},
            headers={"WWW-Authenticate": "Bearer"},
        )
    return identity_id
