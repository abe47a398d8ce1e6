"""
auth/sessions.py -- Refresh-session lifecycle.

A session is Active until it is deleted. Deletion happens on explicit logout,
bulk revoke (logout everywhere, password change), or the periodic expiry
sweep. There is no Revoked/Expired status column -- a missing row is the
terminal state.

Validation requires all of:
  1. the refresh JWT verifies (signature, iss, aud, exp, token_type),
  2. the user in the token still exists and is active,
  3. a session row with that id belongs to that user,
  4. SHA-256(token) equals the stored hash,
  5. now < expires_at.
Any failure raises SessionInvalidError with the same message. Store outages
raise StoreUnavailableError instead so callers can retry.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from auth.errors import SessionInvalidError, TokenError
from auth.models import DeviceInfo, Session, SessionGrant, User
from auth.tokens import hash_refresh_token

if TYPE_CHECKING:
    from auth.store import SessionStore, UserStore
    from auth.tokens import TokenIssuer

logger = logging.getLogger("tradesauth.auth.sessions")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionManager:
    """Creates, validates, and revokes refresh sessions.

    Usage:
        manager = SessionManager(session_store, user_store, issuer)
        grant = manager.create_session(user, DeviceInfo(device_type="ios"))
        session, user = manager.validate_session(grant.refresh_token)
        manager.revoke_session(grant.session_id)
    """

    def __init__(
        self,
        store: SessionStore,
        users: UserStore,
        issuer: TokenIssuer,
        session_ttl: timedelta | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.users = users
        self.issuer = issuer
        # The refresh JWT is minted with exp == session expiry, whatever the ttl.
        self.session_ttl = session_ttl if session_ttl is not None else issuer.refresh_ttl
        self._clock = clock

    def create_session(self, user: User, device_info: DeviceInfo | None = None) -> SessionGrant:
        """Persist a new session and return its one-time refresh token.

        The expiry is fixed here and never extended by later refreshes.
        """
        device = device_info or DeviceInfo()
        session_id = str(uuid.uuid4())
        now = self._clock()
        expires_at = now + self.session_ttl
        refresh_token = self.issuer.issue_refresh(user, session_id, expires_at=expires_at)
        self.store.create(
            Session(
                id=session_id,
                user_id=str(user.id),
                refresh_token_hash=hash_refresh_token(refresh_token),
                expires_at=expires_at,
                device_type=device.device_type or "unknown",
                device_info={
                    **device.extra,
                    "device_type": device.device_type,
                    "ip_address": device.ip_address,
                    "user_agent": device.user_agent,
                },
                ip_address=device.ip_address,
                user_agent=device.user_agent,
                created_at=now,
                last_used_at=now,
            )
        )
        logger.info("Session %s created for user %s (%s)", session_id, user.id, device.device_type)
        return SessionGrant(session_id=session_id, refresh_token=refresh_token, expires_at=expires_at)

    def validate_session(self, refresh_token: str) -> tuple[Session, User]:
        """Return (session, current user) for a live refresh token.

        last_used_at is only written after every check has passed, inside a
        single store transaction.
        """
        try:
            claims = self.issuer.verify_refresh(refresh_token)
        except TokenError as exc:
            raise SessionInvalidError() from exc

        user = self.users.find_active_by_id(claims.user_id)
        if user is None:
            raise SessionInvalidError()

        session = self.store.touch_if_valid(
            claims.session_id,
            claims.user_id,
            hash_refresh_token(refresh_token),
            self._clock(),
        )
        if session is None:
            raise SessionInvalidError()
        return session, user

    def revoke_session(self, session_id: str) -> None:
        """Delete one session. Revoking a session that does not exist is a no-op."""
        if self.store.delete(session_id):
            logger.info("Session %s revoked", session_id)

    def revoke_all_for_user(self, user_id: str) -> int:
        count = self.store.delete_for_user(user_id)
        logger.info("Revoked %d session(s) for user %s", count, user_id)
        return count

    def cleanup_expired(self) -> int:
        """Delete every session whose expiry has passed and return how many went."""
        count = self.store.delete_expired(self._clock())
        if count:
            logger.info("Expired session cleanup removed %d row(s)", count)
        return count

    def list_sessions(self, user_id: str) -> list[Session]:
        return self.store.list_for_user(user_id, self._clock())
