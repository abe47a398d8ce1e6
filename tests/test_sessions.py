"""Unit tests for auth/sessions.py -- SessionManager lifecycle.

Covers:
- validate_session accepts exactly the token issued for that session
- another session's token, a revoked session, and an expired row all fail
  with the same SessionInvalidError
- suspended users cannot refresh
- revoke is idempotent; revoke_all removes every session of one user
- cleanup_expired is re-entrant (second run removes nothing)
- device metadata is persisted with the session; client extras never
  overwrite the server-observed ip, user agent or device type
- the refresh token exp equals the session row expiry
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from auth.errors import SessionInvalidError
from auth.models import DeviceInfo
from auth.sessions import SessionManager
from auth.store import UserStore
from auth.tokens import TokenIssuer, hash_refresh_token


class TestCreate:
    def test_grant_matches_stored_row(self, manager: SessionManager, make_user, clock) -> None:
        user = make_user()
        grant = manager.create_session(user, DeviceInfo(device_type="ios", ip_address="10.1.1.1"))
        stored = manager.store.get(grant.session_id)
        assert stored.user_id == user.id
        assert stored.refresh_token_hash == hash_refresh_token(grant.refresh_token)
        assert grant.expires_at == clock.now + timedelta(days=7)
        assert stored.expires_at == grant.expires_at

    def test_refresh_exp_matches_session_expiry(self, manager: SessionManager, make_user) -> None:
        grant = manager.create_session(make_user())
        claims = manager.issuer.verify_refresh(grant.refresh_token)
        assert abs(claims.expires_at - grant.expires_at) < timedelta(seconds=1)

    def test_explicit_ttl_also_pins_token_exp(self, session_store, user_store, issuer, make_user, clock) -> None:
        short = SessionManager(session_store, user_store, issuer, session_ttl=timedelta(hours=1), clock=clock)
        grant = short.create_session(make_user())
        claims = issuer.verify_refresh(grant.refresh_token)
        assert grant.expires_at == clock.now + timedelta(hours=1)
        assert abs(claims.expires_at - grant.expires_at) < timedelta(seconds=1)

    def test_client_extra_cannot_override_request_metadata(self, manager: SessionManager, make_user) -> None:
        device = DeviceInfo(
            device_type="ios",
            ip_address="10.0.0.7",
            user_agent="TradesApp/3.0",
            extra={"ip_address": "1.2.3.4", "user_agent": "spoofed", "device_type": "desktop", "os": "17.2"},
        )
        grant = manager.create_session(make_user(), device)
        stored = manager.store.get(grant.session_id)
        assert stored.device_info["ip_address"] == "10.0.0.7"
        assert stored.device_info["user_agent"] == "TradesApp/3.0"
        assert stored.device_info["device_type"] == "ios"
        assert stored.device_info["os"] == "17.2"

    def test_raw_token_never_stored(self, manager: SessionManager, make_user) -> None:
        grant = manager.create_session(make_user())
        stored = manager.store.get(grant.session_id)
        assert grant.refresh_token not in (stored.refresh_token_hash, str(stored.device_info))

    def test_device_info_persisted(self, manager: SessionManager, make_user) -> None:
        device = DeviceInfo(device_type="android", user_agent="TradesApp/2.0", extra={"app_version": "2.0"})
        grant = manager.create_session(make_user(), device)
        stored = manager.store.get(grant.session_id)
        assert stored.device_type == "android"
        assert stored.user_agent == "TradesApp/2.0"
        assert stored.device_info["app_version"] == "2.0"

    def test_default_device_is_unknown(self, manager: SessionManager, make_user) -> None:
        grant = manager.create_session(make_user())
        assert manager.store.get(grant.session_id).device_type == "unknown"


class TestValidate:
    def test_issued_token_validates(self, manager: SessionManager, make_user, clock) -> None:
        user = make_user()
        grant = manager.create_session(user)
        clock.advance(minutes=30)
        session, current = manager.validate_session(grant.refresh_token)
        assert session.id == grant.session_id
        assert current.id == user.id
        assert session.last_used_at == clock.now

    def test_only_the_issued_token_matches(self, manager: SessionManager, make_user) -> None:
        """A correctly signed token naming the same session, but not the issued one, is refused."""
        user = make_user()
        grant = manager.create_session(user)
        forger = TokenIssuer(
            access_secret=manager.issuer._access_secret,
            refresh_secret=manager.issuer._refresh_secret,
            refresh_ttl=timedelta(days=6),
        )
        with pytest.raises(SessionInvalidError):
            manager.validate_session(forger.issue_refresh(user, grant.session_id))
        manager.validate_session(grant.refresh_token)

    def test_sibling_session_unaffected_by_revoke(self, manager: SessionManager, make_user) -> None:
        user = make_user()
        first = manager.create_session(user)
        second = manager.create_session(user)
        manager.revoke_session(second.session_id)
        with pytest.raises(SessionInvalidError):
            manager.validate_session(second.refresh_token)
        manager.validate_session(first.refresh_token)

    def test_garbage_token(self, manager: SessionManager) -> None:
        with pytest.raises(SessionInvalidError):
            manager.validate_session("not-a-token")

    def test_access_token_is_not_a_refresh_token(self, manager: SessionManager, make_user) -> None:
        user = make_user()
        manager.create_session(user)
        with pytest.raises(SessionInvalidError):
            manager.validate_session(manager.issuer.issue_access(user))

    def test_revoked_session_fails(self, manager: SessionManager, make_user) -> None:
        grant = manager.create_session(make_user())
        manager.revoke_session(grant.session_id)
        with pytest.raises(SessionInvalidError):
            manager.validate_session(grant.refresh_token)

    def test_expired_row_fails_even_with_valid_jwt(self, manager: SessionManager, make_user, clock) -> None:
        grant = manager.create_session(make_user())
        clock.advance(days=8)
        with pytest.raises(SessionInvalidError):
            manager.validate_session(grant.refresh_token)

    def test_suspended_user_fails(self, manager: SessionManager, make_user, user_store: UserStore) -> None:
        user = make_user()
        grant = manager.create_session(user)
        user_store.update_user(user.id, account_status="suspended")
        with pytest.raises(SessionInvalidError):
            manager.validate_session(grant.refresh_token)

    def test_all_failures_share_one_message(self, manager: SessionManager, make_user, clock) -> None:
        grant = manager.create_session(make_user())
        with pytest.raises(SessionInvalidError) as bad_token:
            manager.validate_session("junk")
        clock.advance(days=8)
        with pytest.raises(SessionInvalidError) as expired:
            manager.validate_session(grant.refresh_token)
        assert bad_token.value.message == expired.value.message


class TestRevoke:
    def test_revoke_is_idempotent(self, manager: SessionManager, make_user) -> None:
        grant = manager.create_session(make_user())
        manager.revoke_session(grant.session_id)
        manager.revoke_session(grant.session_id)
        manager.revoke_session("never-existed")
        assert manager.store.get(grant.session_id) is None

    def test_revoke_all_only_touches_one_user(self, manager: SessionManager, make_user) -> None:
        alice = make_user(email="alice@x.com")
        bob = make_user(email="bob@x.com")
        for _ in range(3):
            manager.create_session(alice)
        bob_grant = manager.create_session(bob)
        assert manager.revoke_all_for_user(alice.id) == 3
        assert manager.list_sessions(alice.id) == []
        manager.validate_session(bob_grant.refresh_token)


class TestCleanup:
    def test_cleanup_removes_only_expired(self, manager: SessionManager, make_user, clock) -> None:
        user = make_user()
        old = manager.create_session(user)
        clock.advance(days=6)
        fresh = manager.create_session(user)
        clock.advance(days=2)
        assert manager.cleanup_expired() == 1
        assert manager.store.get(old.session_id) is None
        assert manager.store.get(fresh.session_id) is not None

    def test_cleanup_is_reentrant(self, manager: SessionManager, make_user, clock) -> None:
        user = make_user()
        for _ in range(2):
            manager.create_session(user)
        clock.advance(days=8)
        assert manager.cleanup_expired() == 2
        assert manager.cleanup_expired() == 0

    def test_list_sessions_hides_expired(self, manager: SessionManager, make_user, clock) -> None:
        user = make_user()
        manager.create_session(user)
        clock.advance(days=8)
        live = manager.create_session(user)
        assert [s.id for s in manager.list_sessions(user.id)] == [live.session_id]
