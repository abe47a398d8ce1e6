"""
auth/tokens.py -- Access/refresh JWT issuance and verification.

Security design decisions:
  JWT: python-jose with HS256. Access and refresh tokens are signed with two
       independently configured secrets, so an access-token key leak does not
       let an attacker mint refresh tokens (and vice versa). TokenIssuer
       refuses to start with identical secrets [M8].

  Claims: both token types carry iss/aud/sub/iat/exp plus a token_type
       claim. Verification checks all of them and fails closed when any
       expected claim is missing -- a refresh token presented as an access
       token is rejected even if someone configured the same key twice.

  Access tokens also carry a random jti so two tokens minted in the same
       second for the same user are distinct strings.

  Refresh token hashing: SHA-256 hex. Refresh tokens are high-entropy signed
       values, so a fast deterministic hash is enough and lets the session
       store compare in O(1). bcrypt's slowness buys nothing here.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTError

from auth.errors import MalformedHeaderError, TokenExpiredError, TokenInvalidError
from auth.models import AccessClaims, RefreshClaims

if TYPE_CHECKING:
    from auth.models import User
    from core.config import Settings

logger = logging.getLogger("tradesauth.auth.tokens")

_ALGORITHM = "HS256"
_ACCESS = "access"
_REFRESH = "refresh"

_ACCESS_CLAIMS = ("user_id", "email", "role", "account_status", "email_verified", "phone_verified")
_REFRESH_CLAIMS = ("user_id", "session_id")


def hash_refresh_token(token: str) -> str:
    """Return SHA-256(token) as a hex string -- the value stored on the session."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def extract_bearer(header_value: str | None) -> str:
    """Return the token from an 'Authorization: Bearer <token>' header value.

    Exactly two space-separated parts are accepted and the scheme must be
    'Bearer' verbatim. Missing, empty, or differently shaped headers raise
    MalformedHeaderError.
    """
    if not header_value:
        raise MalformedHeaderError("No authorization header provided.")
    parts = header_value.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer" or not parts[1]:
        raise MalformedHeaderError()
    return parts[1]


def _timestamp(value) -> datetime:
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


class TokenIssuer:
    """Mints and verifies the two JWT families.

    Usage:
        issuer = TokenIssuer.from_settings(get_settings())
        token = issuer.issue_access(user)
        claims = issuer.verify_access(token)
    """

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        access_ttl: timedelta = timedelta(minutes=15),
        refresh_ttl: timedelta = timedelta(days=7),
        issuer: str = "trades-platform",
        audience: str = "trades-users",
    ) -> None:
        if not access_secret or not refresh_secret:
            raise ValueError("Both access and refresh signing secrets are required.")
        if access_secret == refresh_secret:
            raise ValueError("Access and refresh signing secrets must be independent.")
        self._access_secret = access_secret
        self._refresh_secret = refresh_secret
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self.issuer = issuer
        self.audience = audience

    @classmethod
    def from_settings(cls, settings: Settings) -> TokenIssuer:
        return cls(
            access_secret=settings.access_token_secret,
            refresh_secret=settings.refresh_token_secret,
            access_ttl=settings.access_token_ttl,
            refresh_ttl=settings.refresh_token_ttl,
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
        )

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def _registered_claims(self, subject: str, ttl: timedelta, expires_at: datetime | None = None) -> dict:
        now = datetime.now(timezone.utc)
        return {
            "sub": subject,
            "iss": self.issuer,
            "aud": self.audience,
            "iat": now,
            "exp": expires_at if expires_at is not None else now + ttl,
        }

    def issue_access(self, user: User) -> str:
        """Encode a signed access token carrying the user's current state."""
        payload = self._registered_claims(str(user.id), self.access_ttl)
        payload.update(
            {
                "user_id": str(user.id),
                "email": user.email,
                "role": user.user_type,
                "account_status": user.account_status,
                "email_verified": user.email_verified,
                "phone_verified": user.phone_verified,
                "token_type": _ACCESS,
                "jti": uuid.uuid4().hex,
            }
        )
        return jwt.encode(payload, self._access_secret, algorithm=_ALGORITHM)

    def issue_refresh(self, user: User, session_id: str, expires_at: datetime | None = None) -> str:
        """Encode a signed refresh token bound to one session id.

        expires_at pins exp to the session row's expiry; without it the
        token lives refresh_ttl from now.
        """
        payload = self._registered_claims(str(user.id), self.refresh_ttl, expires_at)
        payload.update(
            {
                "user_id": str(user.id),
                "session_id": session_id,
                "token_type": _REFRESH,
            }
        )
        return jwt.encode(payload, self._refresh_secret, algorithm=_ALGORITHM)

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def _decode(self, token: str, secret: str, token_type: str, required: tuple[str, ...]) -> dict:
        try:
            payload = jwt.decode(
                token,
                secret,
                algorithms=[_ALGORITHM],
                audience=self.audience,
                issuer=self.issuer,
                options={"require_exp": True, "require_iat": True, "require_sub": True},
            )
        except ExpiredSignatureError as exc:
            raise TokenExpiredError() from exc
        except (JWTError, AttributeError, TypeError, ValueError) as exc:
            raise TokenInvalidError() from exc
        if payload.get("token_type") != token_type:
            raise TokenInvalidError()
        if any(name not in payload for name in required):
            raise TokenInvalidError()
        if payload["sub"] != payload["user_id"]:
            raise TokenInvalidError()
        return payload

    def verify_access(self, token: str) -> AccessClaims:
        """Return verified access claims or raise TokenExpiredError / TokenInvalidError."""
        payload = self._decode(token, self._access_secret, _ACCESS, _ACCESS_CLAIMS)
        return AccessClaims(
            user_id=payload["user_id"],
            email=payload["email"],
            role=payload["role"],
            account_status=payload["account_status"],
            email_verified=bool(payload["email_verified"]),
            phone_verified=bool(payload["phone_verified"]),
            issued_at=_timestamp(payload["iat"]),
            expires_at=_timestamp(payload["exp"]),
        )

    def verify_refresh(self, token: str) -> RefreshClaims:
        """Return verified refresh claims or raise TokenExpiredError / TokenInvalidError.

        A valid signature is necessary but not sufficient -- the session
        manager still has to match the token hash against the stored session.
        """
        payload = self._decode(token, self._refresh_secret, _REFRESH, _REFRESH_CLAIMS)
        return RefreshClaims(
            user_id=payload["user_id"],
            session_id=payload["session_id"],
            issued_at=_timestamp(payload["iat"]),
            expires_at=_timestamp(payload["exp"]),
        )
