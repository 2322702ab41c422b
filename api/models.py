"""
API request and response models for the AuthCore REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Request models do all input validation (shape, length, password confirmation)
so the service layer only ever sees well-formed values. Wire field names are
camelCase, matching the front end; Python attributes stay snake_case.

password_hash never appears in any model here.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from auth.models import TokenPair, User

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EPHEMERAL_TOKEN_PATTERN = r"^[0-9a-f]{64}$"

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_NAME_RE = re.compile(r"^[a-zA-Z\s'-]+$")

_EMAIL_MAX = 255
_PASSWORD_MIN = 8
_PASSWORD_MAX = 128
_NAME_MAX = 50


def _normalize_email(value: Any) -> str:
    if not isinstance(value, str):
        raise ValueError("Email is required")
    email = value.strip().lower()
    if not email:
        raise ValueError("Email is required")
    if len(email) > _EMAIL_MAX:
        raise ValueError(f"Email must be at most {_EMAIL_MAX} characters")
    if not _EMAIL_RE.match(email):
        raise ValueError("Please provide a valid email address")
    return email


def _check_name(value: Optional[str], label: str) -> Optional[str]:
    if value is None:
        return None
    name = value.strip()
    if not name or len(name) > _NAME_MAX:
        raise ValueError(f"{label} must be between 1 and {_NAME_MAX} characters")
    if not _NAME_RE.match(name):
        raise ValueError(f"{label} can only contain letters, spaces, hyphens, and apostrophes")
    return name


class _Request(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SignupRequest(_Request):
    """Request body for POST /api/v1/auth/signup."""

    email: str
    password: str = Field(min_length=_PASSWORD_MIN, max_length=_PASSWORD_MAX)
    password_confirm: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value: Any) -> str:
        return _normalize_email(value)

    @field_validator("first_name")
    @classmethod
    def check_first_name(cls, value: Optional[str]) -> Optional[str]:
        return _check_name(value, "First name")

    @field_validator("last_name")
    @classmethod
    def check_last_name(cls, value: Optional[str]) -> Optional[str]:
        return _check_name(value, "Last name")

    @model_validator(mode="after")
    def passwords_match(self) -> "SignupRequest":
        if self.password != self.password_confirm:
            raise ValueError("Passwords do not match")
        return self


class LoginRequest(_Request):
    """Request body for POST /api/v1/auth/login.

    Only presence is checked for the password: length rules apply when a
    password is set, not when one is presented.
    """

    email: str
    password: str = Field(min_length=1, max_length=_PASSWORD_MAX)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value: Any) -> str:
        return _normalize_email(value)


class EmailRequest(_Request):
    """Request body for POST /resend-verification and POST /forgot-password."""

    email: str

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value: Any) -> str:
        return _normalize_email(value)


class ResetPasswordRequest(_Request):
    """Request body for POST /api/v1/auth/reset-password/{token}."""

    password: str = Field(min_length=_PASSWORD_MIN, max_length=_PASSWORD_MAX)
    password_confirm: str

    @model_validator(mode="after")
    def passwords_match(self) -> "ResetPasswordRequest":
        if self.password != self.password_confirm:
            raise ValueError("Passwords do not match")
        return self


class UpdatePasswordRequest(_Request):
    """Request body for PATCH /api/v1/auth/update-password."""

    current_password: str = Field(min_length=1, max_length=_PASSWORD_MAX)
    new_password: str = Field(min_length=_PASSWORD_MIN, max_length=_PASSWORD_MAX)
    password_confirm: str

    @model_validator(mode="after")
    def passwords_match(self) -> "UpdatePasswordRequest":
        if self.new_password != self.password_confirm:
            raise ValueError("Passwords do not match")
        return self


class UpdateProfileRequest(_Request):
    """Request body for PATCH /api/v1/auth/profile. Omitted fields are left unchanged."""

    first_name: Optional[str] = None
    last_name: Optional[str] = None

    @field_validator("first_name")
    @classmethod
    def check_first_name(cls, value: Optional[str]) -> Optional[str]:
        return _check_name(value, "First name")

    @field_validator("last_name")
    @classmethod
    def check_last_name(cls, value: Optional[str]) -> Optional[str]:
        return _check_name(value, "Last name")


class RefreshTokenRequest(_Request):
    refresh_token: str = Field(min_length=1)


class GoogleLoginRequest(_Request):
    """Request body for POST /api/v1/auth/google. id_token comes from Google Sign-In."""

    id_token: str = Field(min_length=1)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class _Response(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class UserSummary(_Response):
    """Public view of a User. Never includes credential or lockout state."""

    id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    full_name: str = ""
    avatar: Optional[str] = None
    is_email_verified: bool = False
    last_login_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_user(cls, user: User) -> "UserSummary":
        return cls(
            id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            full_name=user.full_name,
            avatar=user.avatar,
            is_email_verified=user.is_email_verified,
            last_login_at=user.last_login_at,
            created_at=user.created_at,
        )


class SessionData(_Response):
    """data payload of login, verify-email and google responses."""

    access_token: str
    refresh_token: str
    user: UserSummary

    @classmethod
    def build(cls, user: User, tokens: TokenPair) -> "SessionData":
        return cls(
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            user=UserSummary.from_user(user),
        )


def success(message: Optional[str] = None, data: Optional[BaseModel | dict] = None) -> dict:
    """Build the {"status": "success", "message"?, "data"?} envelope.

    Keys whose value is None are omitted. Models are dumped by alias so the
    wire format is camelCase with ISO-8601 timestamps.
    """
    body: dict = {"status": "success"}
    if message is not None:
        body["message"] = message
    if data is not None:
        body["data"] = data.model_dump(mode="json", by_alias=True) if isinstance(data, BaseModel) else data
    return body


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

    status: str = "ok"
    version: str
    database: str = "ok"
