"""
API request and response models for ProjectGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import Role, User

# Deliberately loose: one "@" with something on each side. Deliverability is
# not our concern.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+$"


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


# Wire form of auth.models.Role, built from it so the role names live in one place.
RoleEnum = Enum("RoleEnum", {role.name: role.name for role in Role}, type=str)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register.

    Password length policy is checked by PasswordHasher.validate_password(),
    not here, so the API returns the domain error code (password_too_short)
    rather than a generic 422.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255, pattern=EMAIL_PATTERN)
    name: str = Field(min_length=1, max_length=255)
    password: str = Field(max_length=255)

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, value: str) -> str:
        return value.lower()


class LoginRequest(BaseModel):
    email: str = Field(min_length=1, max_length=255)
    password: str = Field(max_length=255)

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, value: str) -> str:
        return value.strip().lower()


class MemberRoleUpdate(BaseModel):
    """Request body for PUT /api/v1/projects/{project_id}/members/{user_id}."""

    role: RoleEnum

    @field_validator("role", mode="before")
    @classmethod
    def normalize_role(cls, value: object) -> object:
        """Accept any casing; unknown text falls through and fails enum validation."""
        parsed = Role.parse(value)
        return parsed.name if parsed is not None else value


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    name: str
    created_at: str

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id or "",
            email=user.email,
            name=user.name,
            created_at=user.created_at or "",
        )


class AuthPayload(BaseModel):
    """Response for register and login. The session itself travels in the cookie."""

    model_config = ConfigDict(frozen=True)

    success: bool
    user: Optional[UserResponse] = None


class MeResponse(BaseModel):
    """Response for GET /api/v1/auth/me. user is None for anonymous callers."""

    model_config = ConfigDict(frozen=True)

    authenticated: bool
    user: Optional[UserResponse] = None


class MemberResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    project_id: str
    user_id: str
    role: RoleEnum


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
