"""
API request and response models for the appy auth endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Response bodies use camelCase keys (accessToken, refreshToken, isActive, ...)
to match what the browser client stores.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from auth.models import User

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class _EmailRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255, pattern=EMAIL_PATTERN)

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, value: str) -> str:
        return value.lower()


class LoginRequest(_EmailRequest):
    """Request body for POST /login."""

    password: str = Field(min_length=1, max_length=255)


class ForgotPasswordRequest(_EmailRequest):
    """Request body for POST /login/forgot."""


class ResetPasswordRequest(BaseModel):
    """Request body for POST /login/reset.

    pin has no default: the client must send it, but null is allowed when
    the reset was started by a Super Admin and no PIN is required.
    """

    token: str = Field(min_length=1)
    password: str = Field(min_length=1, max_length=255)
    pin: Optional[str] = Field(max_length=255)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class _CamelModel(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


class UserResponse(_CamelModel):
    """A user as returned to clients. password and pin are always blank."""

    id: int
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: Optional[str] = None
    is_active: bool
    is_enabled: bool
    is_deleted: bool
    created_at: Optional[str] = None
    password: str = ""
    pin: str = ""

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        """Map a domain User, dropping every secret it carries."""
        return cls(
            id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            role=user.role_name,
            is_active=user.is_active,
            is_enabled=user.is_enabled,
            is_deleted=user.is_deleted,
            created_at=user.created_at,
        )


class LoginResponse(_CamelModel):
    """Response for POST /login. refresh_token is only present under the refresh strategy."""

    user: UserResponse
    access_token: str
    refresh_token: Optional[str] = None
    scope: list[str]


class MeResponse(_CamelModel):
    user: UserResponse
    scope: list[str]


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


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
    """Response for GET /health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
