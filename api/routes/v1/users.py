"""
api/routes/v1/users.py -- Profile endpoints for the authenticated identity.

Routes:
  GET /api/v1/users/{user_id}/profile   -- read profile
  POST /api/v1/users/{user_id}/profile  -- create profile (201)
  PATCH /api/v1/users/{user_id}/profile -- change only the given fields

Auth policy: all three require a valid, unexpired bearer access token whose subject
equals {user_id}. A token for a different identity gets 403 -- there is no
admin role that may read other profiles.
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Request

from api.models import ProfileRequest, ProfileResponse, ProfileUpdateRequest
from auth.dependencies import get_current_identity_id
from auth.errors import IdentityNotFoundError, ProfileExistsError, ProfileNotFoundError, UsernameTakenError
from auth.service import SessionService

router = APIRouter()


def _require_self(user_id: uuid.UUID, current_id: uuid.UUID) -> None:
    if user_id != current_id:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Access token does not belong to this user."},
        )


@router.get("/users/{user_id}/profile", response_model=ProfileResponse)
def get_profile(
    request: Request,
    user_id: uuid.UUID,
    current_id: uuid.UUID = Depends(get_current_identity_id),
) -> ProfileResponse:
    _require_self(user_id, current_id)
    service: SessionService = request.app.state.session_service
    try:
        profile = service.get_profile(user_id)
    except IdentityNotFoundError as exc:
        raise HTTPException(status_code=404, detail={"code": "user_not_found", "message": str(exc)}) from exc
    except ProfileNotFoundError as exc:
        raise HTTPException(status_code=404, detail={"code": "profile_not_found", "message": str(exc)}) from exc
    return ProfileResponse.from_profile(profile)


@router.post("/users/{user_id}/profile", response_model=ProfileResponse, status_code=201)
def create_profile(
    request: Request,
    user_id: uuid.UUID,
    body: ProfileRequest,
    current_id: uuid.UUID = Depends(get_current_identity_id),
) -> ProfileResponse:
    """Create the caller's profile. 409 if one already exists or the username is taken."""
    _require_self(user_id, current_id)
    service: SessionService = request.app.state.session_service
    try:
        profile = service.create_profile(user_id, body.to_profile_info())
    except IdentityNotFoundError as exc:
        raise HTTPException(status_code=404, detail={"code": "user_not_found", "message": str(exc)}) from exc
    except ProfileExistsError as exc:
        raise HTTPException(status_code=409, detail={"code": "profile_exists", "message": str(exc)}) from exc
    except UsernameTakenError as exc:
        raise HTTPException(status_code=409, detail={"code": "username_taken", "message": str(exc)}) from exc
    return ProfileResponse.from_profile(profile)


@router.patch("/users/{user_id}/profile", response_model=ProfileResponse)
def update_profile(
    request: Request,
    user_id: uuid.UUID,
    body: ProfileUpdateRequest,
    current_id: uuid.UUID = Depends(get_current_identity_id),
) -> ProfileResponse:
    """Change only the fields present in the body and return the full profile."""
    _require_self(user_id, current_id)
    service: SessionService = request.app.state.session_service
    try:
        profile = service.update_profile(user_id, body.to_profile_update())
    except IdentityNotFoundError as exc:
        raise HTTPException(status_code=404, detail={"code": "user_not_found", "message": str(exc)}) from exc
    except ProfileNotFoundError as exc:
        raise HTTPException(status_code=404, detail={"code": "profile_not_found", "message": str(exc)}) from exc
    except UsernameTakenError as exc:
        raise HTTPException(status_code=409, detail={"code": "username_taken", "message": str(exc)}) from exc
    return ProfileResponse.from_profile(profile)
