"""
api/routes/v1/auth.py -- Passwordless login REST endpoints.

Routes:
  POST /api/v1/auth/authenticate     -- find-or-create identity, email a code
  POST /api/v1/auth/token            -- confirm code, issue access + refresh tokens
  POST /api/v1/auth/token/refresh    -- new access token from a refresh token

Status mapping:
  authenticate:   201 new identity / 200 existing; 400 invalid email.
  token:          400 bad X-User-Id or malformed code; 401 wrong code or no
                  live code; 404 identity gone.
  token/refresh:  401 bad X-User-Id; 400 empty token; 403 invalid token;
                  404 identity missing.
  StorageError / EmailDispatchError propagate to the app-level handlers in
  api/main.py (503 / 502).

Security:
  Cache-Control: no-store on every response that carries a credential.
  The plaintext code only ever travels in the email body, never in a response.
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Header, HTTPException, Request
from fastapi.responses import JSONResponse

from api.models import (
    AuthenticateRequest,
    AuthenticateResponse,
    GetTokensRequest,
    RefreshRequest,
    RefreshResponse,
    TokensResponse,
)
from auth.errors import (
    EmptyTokenError,
    IdentityNotFoundError,
    IdentityServiceError,
    InvalidCodeError,
    InvalidEmailError,
    InvalidRefreshTokenError,
    MismatchError,
    NotFoundError,
)
from auth.service import SessionService

# Auth policy: all three endpoints are public -- they are how a caller obtains
# credentials in the first place. Identity is proven by the emailed code
# (token) or by the refresh token (token/refresh).
router = APIRouter()


def _http_error(status_code: int, code: str, exc: IdentityServiceError) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"code": code, "message": str(exc)})


def _parse_user_id(raw: str, status_code: int) -> uuid.UUID:
    try:
        return uuid.UUID(raw)
    except ValueError:
        raise HTTPException(
            status_code=status_code,
            detail={"code": "invalid_user_id", "message": "X-User-Id must be a UUID."},
        ) from None


def _no_store(resp: JSONResponse) -> JSONResponse:
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/authenticate", response_model=AuthenticateResponse)
def authenticate(request: Request, body: AuthenticateRequest) -> JSONResponse:
    """Start a login. Creates the identity on first use and emails a 4-digit code.

    Returns 201 when the identity was created by this call, 200 otherwise.
    """
    service: SessionService = request.app.state.session_service
    try:
        result = service.authenticate(body.email)
    except InvalidEmailError as exc:
        raise _http_error(400, "invalid_email", exc) from exc

    return JSONResponse(
        status_code=201 if result.created else 200,
        content=AuthenticateResponse(user_id=str(result.identity_id)).model_dump(),
    )


@router.post("/auth/token", response_model=TokensResponse)
def get_tokens(
    request: Request,
    body: GetTokensRequest,
    x_user_id: str = Header(default="", alias="X-User-Id"),
) -> JSONResponse:
    """Exchange a confirmation code for an access token and a refresh token.

    The code is consumed on success; repeating the call with the same code
    returns 401.
    """
    service: SessionService = request.app.state.session_service
    identity_id = _parse_user_id(x_user_id, 400)

    try:
        service.check_code(identity_id, body.code)
    except InvalidCodeError as exc:
        raise _http_error(400, "invalid_code", exc) from exc
    except MismatchError as exc:
        raise _http_error(401, "code_mismatch", exc) from exc
    except NotFoundError as exc:
        raise _http_error(401, "code_not_found", exc) from exc

    try:
        pair = service.get_tokens(identity_id)
    except IdentityNotFoundError as exc:
        raise _http_error(404, "user_not_found", exc) from exc

    resp = JSONResponse(
        status_code=200,
        content=TokensResponse(
            access_token=pair.access_token,
            refresh_token=str(pair.refresh_token),
            expires_in=request.app.state.signer.lifetime,
        ).model_dump(),
    )
    return _no_store(resp)


@router.post("/auth/token/refresh", response_model=RefreshResponse)
def refresh(
    request: Request,
    body: RefreshRequest,
    x_user_id: str = Header(default="", alias="X-User-Id"),
) -> JSONResponse:
    """Issue a new access token. The refresh token itself is not rotated."""
    service: SessionService = request.app.state.session_service
    identity_id = _parse_user_id(x_user_id, 401)

    try:
        access_token = service.refresh(identity_id, body.refresh_token)
    except EmptyTokenError as exc:
        raise _http_error(400, "empty_refresh_token", exc) from exc
    except IdentityNotFoundError as exc:
        raise _http_error(404, "user_not_found", exc) from exc
    except InvalidRefreshTokenError as exc:
        raise _http_error(403, "invalid_refresh_token", exc) from exc

    resp = JSONResponse(
        status_code=200,
        content=RefreshResponse(
            access_token=access_token,
            expires_in=request.app.state.signer.lifetime,
        ).model_dump(),
    )
    return _no_store(resp)
