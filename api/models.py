"""
API request and response models for ResourceHub REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

JSON keys are camelCase on the wire (studentId, refreshToken, ...) via the
to_camel alias generator; request bodies accept snake_case too
(populate_by_name=True).

No response model has a password field. A hash cannot leak through a field
that does not exist.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

from auth.lifecycle import BIO_MAX, NAME_MAX, NAME_MIN, PASSWORD_MAX, PASSWORD_MIN
from auth.models import Department, Role, User

# ---------------------------------------------------------------------------
# Base configs
# ---------------------------------------------------------------------------

_REQUEST_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)
_RESPONSE_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/auth/register.

    Length limits are the service-layer limits from auth/lifecycle.py; the
    role/semester rule is enforced by AccountService.register() only.
    """

    model_config = _REQUEST_CONFIG

    name: str = Field(min_length=NAME_MIN, max_length=NAME_MAX)
    email: EmailStr
    password: str = Field(min_length=PASSWORD_MIN, max_length=PASSWORD_MAX)
    role: Role
    department: Department
    semester: Optional[int] = None


class LoginRequest(BaseModel):
    """Request body for POST /api/auth/login."""

    model_config = _REQUEST_CONFIG

    email: EmailStr
    password: str = Field(min_length=1, max_length=PASSWORD_MAX)


class UpdateProfileRequest(BaseModel):
    """Request body for PUT /api/auth/update-profile. Omitted fields are left unchanged."""

    model_config = _REQUEST_CONFIG

    name: Optional[str] = Field(default=None, min_length=NAME_MIN, max_length=NAME_MAX)
    department: Optional[Department] = None
    semester: Optional[int] = None
    bio: Optional[str] = Field(default=None, max_length=BIO_MAX)
    profile_image: Optional[str] = Field(default=None, max_length=2048)


class ChangePasswordRequest(BaseModel):
    """Request body for PUT /api/auth/change-password."""

    model_config = _REQUEST_CONFIG

    current_password: str = Field(min_length=1, max_length=PASSWORD_MAX)
    new_password: str = Field(min_length=PASSWORD_MIN, max_length=PASSWORD_MAX)


class RefreshRequest(BaseModel):
    model_config = _REQUEST_CONFIG

    refresh_token: str = Field(min_length=1, max_length=255)


class TokenRequest(BaseModel):
    """Request body for POST /api/auth/verify-email."""

    model_config = _REQUEST_CONFIG

    token: str = Field(min_length=1, max_length=255)


class ForgotPasswordRequest(BaseModel):
    model_config = _REQUEST_CONFIG

    email: EmailStr


class ResetPasswordRequest(BaseModel):
    model_config = _REQUEST_CONFIG

    token: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=PASSWORD_MIN, max_length=PASSWORD_MAX)


class RoleUpdateRequest(BaseModel):
    """Request body for PUT /api/users/{id}/role.

    semester is only read when the new role is student.
    """

    model_config = _REQUEST_CONFIG

    role: Role
    semester: Optional[int] = None


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public view of an identity."""

    model_config = _RESPONSE_CONFIG

    id: int
    name: str
    email: str
    role: Role
    department: Department
    semester: Optional[int] = None
    student_id: Optional[str] = None
    faculty_id: Optional[str] = None
    bio: str = ""
    profile_image: str = ""
    is_active: bool
    is_verified: bool
    created_at: str
    last_login: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        """Build the public view from a domain User.

        Factory Method colocated with the output model, so routes never pick
        fields by hand.
        """
        return cls(
            id=user.id,
            name=user.name,
            email=user.email,
            role=user.role,
            department=user.department,
            semester=user.semester,
            student_id=user.student_id,
            faculty_id=user.faculty_id,
            bio=user.bio,
            profile_image=user.profile_image,
            is_active=user.is_active,
            is_verified=user.is_verified,
            created_at=user.created_at or "",
            last_login=user.last_login,
        )


class MessageResponse(BaseModel):
    model_config = _RESPONSE_CONFIG

    success: bool = True
    message: str


class AuthResponse(BaseModel):
    """Response for register, login and refresh."""

    model_config = _RESPONSE_CONFIG

    success: bool = True
    message: str
    token: str
    refresh_token: Optional[str] = None
    user: UserResponse


class UserEnvelope(BaseModel):
    model_config = _RESPONSE_CONFIG

    success: bool = True
    message: Optional[str] = None
    user: UserResponse


class UserListResponse(BaseModel):
    model_config = _RESPONSE_CONFIG

    success: bool = True
    count: int
    users: list[UserResponse]


class TokenIssuedResponse(BaseModel):
    """Response for verification / reset requests.

    token is populated only when DEBUG=true. In production the raw value
    travels out of band (email) and is never echoed over HTTP.
    """

    model_config = _RESPONSE_CONFIG

    success: bool = True
    message: str
    token: Optional[str] = None


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    success: bool = False
    message: str
    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
