"""
API request and response models for the LabLive auth REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

Wire format is camelCase (tempToken, newPassword, mfaPending). Models accept
either the alias or the Python field name on input and always emit aliases.
"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

from auth.models import User

# bcrypt reads at most 72 bytes; cap input far below anything abusive.
_PASSWORD_MAX = 128


class _WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(_WireModel):
    """Request body for POST /auth/register.

    Self-registration may choose staff or viewer. Admin accounts are created
    by an existing admin (PATCH /users/{id}) or the create-admin CLI.
    """

    name: str = Field(min_length=2, max_length=100)
    email: EmailStr
    password: str = Field(min_length=1, max_length=_PASSWORD_MAX)
    role: Literal["staff", "viewer"] = "staff"


class LoginRequest(_WireModel):
    email: EmailStr
    password: str = Field(min_length=1, max_length=_PASSWORD_MAX)


class MfaTokenRequest(_WireModel):
    """Body for POST /auth/mfa/setup. The token may instead be sent as a bearer header."""

    temp_token: Optional[str] = Field(default=None, max_length=2048)


class MfaCodeRequest(_WireModel):
    temp_token: Optional[str] = Field(default=None, max_length=2048)
    code: str = Field(min_length=6, max_length=12)


class MfaChallengeRequest(_WireModel):
    temp_token: str = Field(min_length=1, max_length=2048)
    code: str = Field(min_length=6, max_length=12)


class EmailRequest(_WireModel):
    """Body for POST /auth/password-reset/request and POST /auth/otp/request."""

    email: EmailStr


class PasswordResetConfirmRequest(_WireModel):
    token: str = Field(min_length=1, max_length=256)
    new_password: str = Field(min_length=1, max_length=_PASSWORD_MAX)


class OtpVerifyRequest(_WireModel):
    email: EmailStr
    code: str = Field(min_length=6, max_length=12)


class UserPatch(_WireModel):
    """Request body for PATCH /users/{id}. At least one field must be set."""

    role: Optional[Literal["admin", "staff", "viewer"]] = None
    is_active: Optional[bool] = None
    name: Optional[str] = Field(default=None, min_length=2, max_length=100)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(_WireModel):
    """Public user fields. Never includes the password hash or MFA secrets."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    email: str
    role: str
    is_active: bool
    mfa_enabled: bool

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(**user.public())


class TokenResponse(_WireModel):
    """Response for register, login and MFA challenge.

    Either token + user (session established) or mfa_pending + temp_token.
    """

    token: Optional[str] = None
    user: Optional[UserResponse] = None
    mfa_pending: Optional[bool] = None
    temp_token: Optional[str] = None


class MfaSetupResponse(_WireModel):
    enrollment_uri: str
    secret: str
    qr_code: str


class SuccessResponse(_WireModel):
    success: bool = True


class OkResponse(_WireModel):
    ok: bool = True


class MeResponse(_WireModel):
    id: int
    role: str
    email: str


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
