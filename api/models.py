"""
API request and response models for the identity service REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Range checks on the confirmation code and the email pattern are domain rules
and live in auth/. The models here only enforce shape and length, so that a
malformed code reaches the domain and is rejected there with its own error.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import ProfileInfo, ProfileUpdate

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class AuthenticateRequest(BaseModel):
    """Request body for POST /api/v1/auth/authenticate."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=1, max_length=320)


class GetTokensRequest(BaseModel):
    """Request body for POST /api/v1/auth/token. The user id travels in X-User-Id."""

    code: int


class RefreshRequest(BaseModel):
    """Request body for POST /api/v1/auth/token/refresh.

    An empty string is accepted here and rejected by the service with its own
    error code (empty_refresh_token).
    """

    refresh_token: str = Field(max_length=512)


class ProfileRequest(BaseModel):
    """Request body for POST /api/v1/users/{user_id}/profile."""

    model_config = ConfigDict(str_strip_whitespace=True)

    first_name: str = Field(min_length=1, max_length=255)
    last_name: Optional[str] = Field(default=None, max_length=255)
    username: str = Field(min_length=3, max_length=64, pattern=r"^[A-Za-z0-9_.-]+$")

    def to_profile_info(self) -> ProfileInfo:
        return ProfileInfo(first_name=self.first_name, last_name=self.last_name, username=self.username)


class ProfileUpdateRequest(BaseModel):
    """Request body for PATCH /api/v1/users/{user_id}/profile. Omitted or null fields are left unchanged."""

    model_config = ConfigDict(str_strip_whitespace=True)

    first_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    last_name: Optional[str] = Field(default=None, max_length=255)
    username: Optional[str] = Field(default=None, min_length=3, max_length=64, pattern=r"^[A-Za-z0-9_.-]+$")

    def to_profile_update(self) -> ProfileUpdate:
        return ProfileUpdate(first_name=self.first_name, last_name=self.last_name, username=self.username)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class AuthenticateResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str


class TokensResponse(BaseModel):
    """Both credentials. The refresh token plaintext is never shown again."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class RefreshResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_in: int


class ProfileResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    first_name: str
    last_name: Optional[str]
    username: str

    @classmethod
    def from_profile(cls, profile: ProfileInfo) -> "ProfileResponse":
        return cls(first_name=profile.first_name, last_name=profile.last_name, username=profile.username)


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
