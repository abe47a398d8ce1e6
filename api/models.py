"""
API request and response models for the Trades Auth REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from auth.models import LoginResult, Session, User

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RegisterRoleEnum(str, Enum):
    customer = "customer"
    contractor = "contractor"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class DeviceInfoIn(BaseModel):
    """Client-reported device metadata. IP and user agent come from the request."""

    model_config = ConfigDict(extra="allow")

    # None lets the X-Device-Type header fill in.
    device_type: Optional[str] = Field(default=None, max_length=50)


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    email: EmailStr
    # Transport bound only; the password policy enforces bcrypt's 72-byte ceiling.
    password: str = Field(min_length=1, max_length=255)
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    user_type: RegisterRoleEnum = RegisterRoleEnum.customer
    phone: Optional[str] = Field(default=None, max_length=20)
    device_info: DeviceInfoIn = Field(default_factory=DeviceInfoIn)

    @field_validator("email", "first_name", "last_name", "phone", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Any:
        # Passwords are compared byte for byte and never stripped.
        return value.strip() if isinstance(value, str) else value


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)
    device_info: DeviceInfoIn = Field(default_factory=DeviceInfoIn)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1)


class PasswordChangeRequest(BaseModel):
    current_password: str = Field(min_length=1, max_length=255)
    new_password: str = Field(min_length=1, max_length=255)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserOut(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    first_name: str
    last_name: str
    user_type: str
    account_status: str
    email_verified: bool
    phone_verified: bool

    @classmethod
    def from_user(cls, user: User) -> "UserOut":
        return cls(
            id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            user_type=user.user_type,
            account_status=user.account_status,
            email_verified=user.email_verified,
            phone_verified=user.phone_verified,
        )


class TokensOut(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_at: datetime


class LoginResponse(BaseModel):
    """Response for register, login and OAuth callback."""

    model_config = ConfigDict(frozen=True)

    user: UserOut
    tokens: TokensOut

    @classmethod
    def from_result(cls, result: LoginResult) -> "LoginResponse":
        return cls(
            user=UserOut.from_user(result.user),
            tokens=TokensOut(
                access_token=result.access_token,
                refresh_token=result.refresh_token,
                expires_at=result.expires_at,
            ),
        )


class RefreshResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    user: UserOut


class SessionOut(BaseModel):
    """One active device session. The token hash is never exposed."""

    model_config = ConfigDict(frozen=True)

    id: str
    device_type: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: Optional[datetime] = None
    last_used_at: Optional[datetime] = None
    expires_at: datetime

    @classmethod
    def from_session(cls, session: Session) -> "SessionOut":
        return cls(
            id=session.id,
            device_type=session.device_type,
            ip_address=session.ip_address,
            user_agent=session.user_agent,
            created_at=session.created_at,
            last_used_at=session.last_used_at,
            expires_at=session.expires_at,
        )


class RevokedResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    sessions_revoked: int = 0


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class OAuthProviderInfo(BaseModel):
    """An enabled OAuth provider, as listed by GET /api/v1/auth/providers."""

    model_config = ConfigDict(frozen=True)

    name: str
    label: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[Any] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
