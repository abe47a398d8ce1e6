"""
auth/guard.py -- Per-request authorization decisions.

AuthGuard is framework-agnostic: it takes the raw Authorization header value
and returns an AuthContext or raises UnauthorizedError / ForbiddenError.
auth/dependencies.py adapts it to FastAPI.

The access token proves who the caller was when it was issued. The guard
always re-reads the user so a suspended account is locked out immediately,
not when its last token expires, and so role and verification checks see the
current record rather than the claims.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING

from auth.errors import ForbiddenError, TokenError, UnauthorizedError
from auth.models import AuthContext
from auth.tokens import extract_bearer

if TYPE_CHECKING:
    from auth.store import UserStore
    from auth.tokens import TokenIssuer

logger = logging.getLogger("tradesauth.auth.guard")


class AuthGuard:
    def __init__(self, issuer: TokenIssuer, users: UserStore) -> None:
        self.issuer = issuer
        self.users = users

    def require_authenticated(self, authorization: str | None) -> AuthContext:
        """Verify the bearer token and re-fetch the (active) user.

        Every token problem and every missing/inactive user raises the same
        UnauthorizedError. StoreUnavailableError propagates unchanged.
        """
        try:
            token = extract_bearer(authorization)
            claims = self.issuer.verify_access(token)
        except TokenError as exc:
            raise UnauthorizedError() from exc

        user = self.users.find_active_by_id(claims.user_id)
        if user is None:
            logger.info("Rejected valid token for missing or inactive user %s", claims.user_id)
            raise UnauthorizedError()
        return AuthContext(user=user, claims=claims)

    def optional_authenticated(self, authorization: str | None) -> AuthContext | None:
        """Same checks as require_authenticated, but None instead of an error."""
        try:
            return self.require_authenticated(authorization)
        except UnauthorizedError:
            return None

    @staticmethod
    def require_role(context: AuthContext | None, allowed_roles: Iterable[str]) -> AuthContext:
        """Allow only users whose current role is in allowed_roles.

        Must run after require_authenticated; a missing context is a 401.
        """
        if context is None:
            raise UnauthorizedError()
        allowed = {str(getattr(r, "value", r)) for r in allowed_roles}
        if context.user.user_type not in allowed:
            raise ForbiddenError()
        return context

    @staticmethod
    def require_email_verified(context: AuthContext | None) -> AuthContext:
        if context is None:
            raise UnauthorizedError()
        if context.user.email_verified_at is None:
            raise ForbiddenError("Email verification required.")
        return context
