"""
API request and response models for VidTube REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Wire format is camelCase (fullName, accessToken, ...); Python attributes stay
snake_case. Every response body is wrapped in ApiResponse.
"""

from typing import Annotated, Any, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints
from pydantic.alias_generators import to_camel

from auth.models import User

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
USERNAME_PATTERN = r"^[A-Za-z0-9_.-]+$"

# bcrypt only looks at the first 72 bytes
PASSWORD_MAX = 72

# Display names are the only free text that gets trimmed. Credentials and
# login identifiers reach the store and bcrypt exactly as sent.
_FullName = Annotated[str, StringConstraints(strip_whitespace=True, max_length=255)]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------


class ApiResponse(BaseModel):
    """Uniform envelope for every response, success or error.

    success is derived from status so the two can never disagree.
    """

    status: int
    success: bool
    message: str
    data: Any = None

    @classmethod
    def build(cls, status: int, data: Any = None, message: str = "Success") -> "ApiResponse":
        return cls(status=status, success=status < 400, message=message, data=data)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(_CamelModel):
    """Request body for POST /api/v1/users/register."""

    full_name: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=255)]
    email: str = Field(min_length=3, max_length=255, pattern=EMAIL_PATTERN)
    username: str = Field(min_length=1, max_length=255, pattern=USERNAME_PATTERN)
    password: str = Field(min_length=1, max_length=PASSWORD_MAX)


class LoginRequest(_CamelModel):
    """Request body for POST /api/v1/users/login.

    One of username / email is required; the route checks that, not the model,
    so the client gets the specific message.
    """

    username: Optional[str] = Field(default=None, max_length=255)
    email: Optional[str] = Field(default=None, max_length=255)
    password: str = Field(min_length=1, max_length=PASSWORD_MAX)


class RefreshRequest(_CamelModel):
    """Optional body for POST /api/v1/users/refresh-token (cookie takes priority)."""

    refresh_token: Optional[str] = None


class ChangePasswordRequest(_CamelModel):
    old_password: str = Field(min_length=1, max_length=PASSWORD_MAX)
    new_password: str = Field(min_length=1, max_length=PASSWORD_MAX)


class UpdateAccountRequest(_CamelModel):
    """Request body for PATCH /api/v1/users/update-account. Both fields are required by the route."""

    full_name: Optional[_FullName] = None
    email: Optional[str] = Field(default=None, max_length=255, pattern=EMAIL_PATTERN)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(_CamelModel):
    """Public view of a user. Never includes the password hash or refresh token."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: int
    username: str
    email: str
    full_name: str
    created_at: str
    updated_at: str

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            full_name=user.full_name,
            created_at=user.created_at or "",
            updated_at=user.updated_at or "",
        )


class TokenData(_CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    access_token: str
    refresh_token: str


class LoginData(TokenData):
    user: UserResponse


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
