"""Unit tests for auth/guard.py -- per-request authorization.

Covers:
- a valid bearer token for an active user yields an AuthContext
- missing/malformed/expired tokens and inactive users all become Unauthorized
- suspension takes effect on the next request, before the token expires
- require_role / require_email_verified use the current user record
- optional_authenticated returns None instead of raising
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from auth.errors import ForbiddenError, UnauthorizedError
from auth.guard import AuthGuard
from auth.models import UserType
from auth.store import UserStore
from auth.tokens import TokenIssuer


def _bearer(issuer: TokenIssuer, user) -> str:
    return f"Bearer {issuer.issue_access(user)}"


class TestRequireAuthenticated:
    def test_valid_token(self, guard: AuthGuard, issuer: TokenIssuer, make_user) -> None:
        user = make_user()
        context = guard.require_authenticated(_bearer(issuer, user))
        assert context.user.id == user.id
        assert context.claims.email == user.email

    @pytest.mark.parametrize("header", [None, "", "Bearer", "Basic abc", "Bearer not.a.jwt"])
    def test_bad_headers_are_unauthorized(self, guard: AuthGuard, header) -> None:
        with pytest.raises(UnauthorizedError):
            guard.require_authenticated(header)

    def test_expired_token_is_unauthorized(self, user_store: UserStore, make_user, issuer: TokenIssuer) -> None:
        user = make_user()
        stale = TokenIssuer(
            access_secret=issuer._access_secret,
            refresh_secret=issuer._refresh_secret,
            access_ttl=timedelta(seconds=-5),
        )
        with pytest.raises(UnauthorizedError):
            AuthGuard(issuer, user_store).require_authenticated(_bearer(stale, user))

    def test_suspended_user_rejected_with_unexpired_token(
        self, guard: AuthGuard, issuer: TokenIssuer, make_user, user_store: UserStore
    ) -> None:
        user = make_user()
        header = _bearer(issuer, user)
        guard.require_authenticated(header)
        user_store.update_user(user.id, account_status="suspended")
        with pytest.raises(UnauthorizedError):
            guard.require_authenticated(header)

    def test_deleted_user_rejected(self, guard: AuthGuard, issuer: TokenIssuer, make_user) -> None:
        user = make_user()
        user.id = "00000000-0000-0000-0000-000000000000"
        with pytest.raises(UnauthorizedError):
            guard.require_authenticated(_bearer(issuer, user))

    def test_context_reflects_current_record(
        self, guard: AuthGuard, issuer: TokenIssuer, make_user, user_store: UserStore
    ) -> None:
        user = make_user()
        header = _bearer(issuer, user)
        user_store.update_user(user.id, user_type=UserType.contractor.value)
        context = guard.require_authenticated(header)
        assert context.user.user_type == "contractor"
        assert context.claims.role == "customer"


class TestOptional:
    def test_none_without_header(self, guard: AuthGuard) -> None:
        assert guard.optional_authenticated(None) is None

    def test_none_for_bad_token(self, guard: AuthGuard) -> None:
        assert guard.optional_authenticated("Bearer garbage") is None

    def test_context_for_good_token(self, guard: AuthGuard, issuer: TokenIssuer, make_user) -> None:
        user = make_user()
        assert guard.optional_authenticated(_bearer(issuer, user)).user.id == user.id


class TestRoles:
    def test_allowed_role(self, guard: AuthGuard, issuer: TokenIssuer, make_user) -> None:
        context = guard.require_authenticated(_bearer(issuer, make_user(user_type="contractor")))
        assert AuthGuard.require_role(context, ["contractor", "admin"]) is context

    def test_enum_roles_accepted(self, guard: AuthGuard, issuer: TokenIssuer, make_user) -> None:
        context = guard.require_authenticated(_bearer(issuer, make_user(user_type="admin")))
        AuthGuard.require_role(context, [UserType.admin])

    def test_other_role_forbidden(self, guard: AuthGuard, issuer: TokenIssuer, make_user) -> None:
        context = guard.require_authenticated(_bearer(issuer, make_user()))
        with pytest.raises(ForbiddenError):
            AuthGuard.require_role(context, ["admin"])

    def test_missing_context_unauthorized(self) -> None:
        with pytest.raises(UnauthorizedError):
            AuthGuard.require_role(None, ["admin"])


class TestEmailVerified:
    def test_unverified_forbidden(self, guard: AuthGuard, issuer: TokenIssuer, make_user) -> None:
        context = guard.require_authenticated(_bearer(issuer, make_user()))
        with pytest.raises(ForbiddenError) as exc_info:
            AuthGuard.require_email_verified(context)
        assert exc_info.value.message == "Email verification required."

    def test_verified_passes(self, guard: AuthGuard, issuer: TokenIssuer, make_user) -> None:
        context = guard.require_authenticated(_bearer(issuer, make_user(email_verified=True)))
        assert AuthGuard.require_email_verified(context) is context

    def test_missing_context_unauthorized(self) -> None:
        with pytest.raises(UnauthorizedError):
            AuthGuard.require_email_verified(None)
