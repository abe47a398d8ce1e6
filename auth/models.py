"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores own persistence,
services do the work, and these classes only carry shape between them.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class UserType(str, Enum):
    customer = "customer"
    contractor = "contractor"
    admin = "admin"
    support = "support"


class AccountStatus(str, Enum):
    pending = "pending"
    active = "active"
    suspended = "suspended"
    deactivated = "deactivated"
    banned = "banned"


@dataclass
class User:
    """A platform account as seen by the auth core.

    The user repository owns the record; the auth core reads identity,
    role, status and verification timestamps, and writes only password_hash
    and last_login_at.

    password_hash is always set, including for accounts created through an
    identity provider (they get a random password nobody knows).
    """

    email: str
    password_hash: str
    user_type: str = UserType.customer.value
    account_status: str = AccountStatus.pending.value
    id: str | None = None
    first_name: str = ""
    last_name: str = ""
    phone: str | None = None
    profile_image_url: str | None = None
    email_verified_at: datetime | None = None
    phone_verified_at: datetime | None = None
    last_login_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.account_status == AccountStatus.active.value

    @property
    def email_verified(self) -> bool:
        return self.email_verified_at is not None

    @property
    def phone_verified(self) -> bool:
        return self.phone_verified_at is not None


@dataclass
class DeviceInfo:
    """Client device metadata recorded on a session.

    extra is free-form (app version, OS, push token ...) and is persisted
    together with the other fields as the session's device_info blob.
    """

    device_type: str = "unknown"
    ip_address: str | None = None
    user_agent: str | None = None
    extra: dict = field(default_factory=dict)


@dataclass
class Session:
    """A server-side refresh session.

    refresh_token_hash is SHA-256 of the refresh JWT. The raw token is handed
    to the client once at creation and never persisted. Sessions are deleted
    on revoke or expiry -- there is no status column.
    """

    id: str
    user_id: str
    refresh_token_hash: str
    expires_at: datetime
    device_type: str = "unknown"
    device_info: dict = field(default_factory=dict)
    ip_address: str | None = None
    user_agent: str | None = None
    created_at: datetime | None = None
    last_used_at: datetime | None = None


@dataclass(frozen=True)
class AccessClaims:
    """Verified claims of an access token, as embedded at issuance time."""

    user_id: str
    email: str
    role: str
    account_status: str
    email_verified: bool
    phone_verified: bool
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class RefreshClaims:
    user_id: str
    session_id: str
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class ProviderProfile:
    """Identity-provider profile after provider-specific normalization."""

    provider: str
    subject_id: str
    email: str
    given_name: str = ""
    family_name: str = ""
    avatar_url: str | None = None
    email_verified: bool = True


@dataclass(frozen=True)
class SessionGrant:
    session_id: str
    refresh_token: str
    expires_at: datetime


@dataclass(frozen=True)
class LoginResult:
    user: User
    access_token: str
    refresh_token: str
    expires_at: datetime
    session_id: str


@dataclass(frozen=True)
class RefreshResult:
    access_token: str
    user: User


@dataclass(frozen=True)
class AuthContext:
    """What a successful authorization check attaches to the request.

    user is re-fetched from the store; claims are what the token said when it
    was issued. Role and verification checks use user, not claims.
    """

    user: User
    claims: AccessClaims
