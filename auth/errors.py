"""
auth/errors.py -- Error taxonomy for credential issuance and verification.

The HTTP layer maps each family to a different status, so the families must
stay distinct:

  ValidationError  -- malformed input, rejected before any I/O (400)
  NotFoundError    -- identity / code / profile absent (401 or 404)
  MismatchError    -- code or refresh token present but wrong (401 / 403)
  ConflictError    -- uniqueness violation (409)
  DependencyError  -- store or email failure; chained to the original
                      exception for logging, never shown to clients (5xx)

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations


class IdentityServiceError(Exception):
    """Base class for every error raised by the auth package."""


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class ValidationError(IdentityServiceError):
    pass


class InvalidEmailError(ValidationError):
    def __init__(self) -> None:
        super().__init__("invalid email address")


class InvalidCodeError(ValidationError):
    def __init__(self) -> None:
        super().__init__("confirmation code must consist of 4 digits")


class EmptyTokenError(ValidationError):
    def __init__(self) -> None:
        super().__init__("refresh_token can't be empty")


class EmptyInputError(ValidationError):
    def __init__(self) -> None:
        super().__init__("empty value can't be hashed")


# ---------------------------------------------------------------------------
# Not found
# ---------------------------------------------------------------------------


class NotFoundError(IdentityServiceError):
    pass


class IdentityNotFoundError(NotFoundError):
    def __init__(self) -> None:
        super().__init__("user not found")


class CodeNotFoundError(NotFoundError):
    def __init__(self) -> None:
        super().__init__("no active confirmation code")


class ProfileNotFoundError(NotFoundError):
    def __init__(self) -> None:
        super().__init__("profile does not exist")


# ---------------------------------------------------------------------------
# Mismatch
# ---------------------------------------------------------------------------


class MismatchError(IdentityServiceError):
    pass


class CodeMismatchError(MismatchError):
    def __init__(self) -> None:
        super().__init__("code mismatch")


class InvalidRefreshTokenError(MismatchError):
    def __init__(self) -> None:
        super().__init__("refresh token is invalid")


# ---------------------------------------------------------------------------
# Conflict
# ---------------------------------------------------------------------------


class ConflictError(IdentityServiceError):
    pass


class IdentityConflictError(ConflictError):
    def __init__(self) -> None:
        super().__init__("email already registered")


class ProfileExistsError(ConflictError):
    def __init__(self) -> None:
        super().__init__("profile already exists")


class UsernameTakenError(ConflictError):
    def __init__(self) -> None:
        super().__init__("username already taken")


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


class DependencyError(IdentityServiceError):
    pass


class StorageError(DependencyError):
    pass


class EmailDispatchError(DependencyError):
    pass
