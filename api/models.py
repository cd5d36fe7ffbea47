"""
API request and response models for EventDesk REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import User

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# One "@", no whitespace, a dot in the domain part.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

PASSWORD_MIN_LEN = 8
PASSWORD_MAX_LEN = 128


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=100)
    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=PASSWORD_MIN_LEN, max_length=PASSWORD_MAX_LEN)
    image: Optional[str] = Field(default=None, max_length=2048)

    @field_validator("email", mode="after")
    @classmethod
    def lowercase_email(cls, value: str) -> str:
        return value.lower()


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255)
    # Only a non-empty check: a short password must fail as bad credentials,
    # not as a validation error that reveals the password policy.
    password: str = Field(min_length=1, max_length=PASSWORD_MAX_LEN)


class ProfileUpdate(BaseModel):
    """Request body for PATCH /api/v1/auth/update. Only name and image are writable.

    Fields omitted from the body are left unchanged; "image": null clears it.
    """

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    image: Optional[str] = Field(default=None, max_length=2048)

    @field_validator("name")
    @classmethod
    def name_not_null(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            raise ValueError("name cannot be null")
        return value


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserOut(BaseModel):
    """Public view of a user. Never includes credentials."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    name: str
    image: Optional[str] = None
    role: str

    @classmethod
    def from_user(cls, user: User) -> "UserOut":
        return cls(id=user.id, email=user.email, name=user.name, image=user.image, role=user.role)


class UserEnvelope(BaseModel):
    """Response body for register, login and profile routes."""

    model_config = ConfigDict(frozen=True)

    user: UserOut
    message: str


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
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
