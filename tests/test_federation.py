"""Unit tests for auth/federation.py -- provider adapters and account linking.

Covers:
- first sign-in creates exactly one active, email-verified customer
- repeat sign-ins (any provider) return the same account unchanged
- an existing password account is returned, never merged or modified
- Google/Apple payloads normalize to ProviderProfile
- unverified provider emails are refused
"""

from __future__ import annotations

import json

import pytest

from auth.errors import ProviderProfileError
from auth.federation import PROVIDER_ADAPTERS, IdentityFederation, normalize_apple, normalize_google
from auth.models import ProviderProfile
from auth.store import UserStore


def _profile(email: str = "new@x.com", provider: str = "google", **kw) -> ProviderProfile:
    return ProviderProfile(provider=provider, subject_id="sub-123", email=email, given_name="Nia", family_name="Ode", **kw)


class TestHandleProviderCallback:
    def test_new_email_creates_active_verified_customer(
        self, federation: IdentityFederation, user_store: UserStore
    ) -> None:
        user = federation.handle_provider_callback(_profile())
        assert user.email == "new@x.com"
        assert user.user_type == "customer"
        assert user.account_status == "active"
        assert user.email_verified
        assert user.first_name == "Nia"
        assert user.last_name == "Ode"
        assert user.password_hash.startswith("$2b$")
        assert user_store.find_by_email("new@x.com").id == user.id

    def test_second_call_returns_same_user(self, federation: IdentityFederation) -> None:
        first = federation.handle_provider_callback(_profile())
        second = federation.handle_provider_callback(_profile(provider="apple"))
        assert first.id == second.id

    def test_email_match_is_case_insensitive(self, federation: IdentityFederation) -> None:
        first = federation.handle_provider_callback(_profile(email="Case@X.com"))
        second = federation.handle_provider_callback(_profile(email="case@x.COM"))
        assert first.id == second.id

    def test_existing_password_account_left_untouched(self, federation: IdentityFederation, make_user) -> None:
        existing = make_user(email="owner@x.com", user_type="contractor")
        linked = federation.handle_provider_callback(_profile(email="owner@x.com"))
        assert linked.id == existing.id
        assert linked.password_hash == existing.password_hash
        assert linked.user_type == "contractor"
        assert linked.email_verified_at is None

    def test_unverified_profile_refused(self, federation: IdentityFederation, user_store: UserStore) -> None:
        with pytest.raises(ProviderProfileError):
            federation.handle_provider_callback(_profile(email="u@x.com", email_verified=False))
        assert user_store.find_by_email("u@x.com") is None


class TestGoogleAdapter:
    def test_normalizes_userinfo(self) -> None:
        profile = normalize_google(
            {
                "sub": "g-1",
                "email": "g@x.com",
                "email_verified": True,
                "given_name": "Gia",
                "family_name": "Lu",
                "picture": "https://example.com/p.png",
            }
        )
        assert profile.provider == "google"
        assert profile.subject_id == "g-1"
        assert profile.avatar_url == "https://example.com/p.png"
        assert profile.given_name == "Gia"

    def test_id_fallback(self) -> None:
        assert normalize_google({"id": 42, "email": "g@x.com", "email_verified": True}).subject_id == "42"

    @pytest.mark.parametrize(
        "userinfo",
        [
            {"sub": "g-1", "email": "g@x.com"},
            {"sub": "g-1", "email": "g@x.com", "email_verified": False},
            {"sub": "g-1", "email_verified": True},
            {"email": "g@x.com", "email_verified": True},
        ],
    )
    def test_incomplete_or_unverified_refused(self, userinfo) -> None:
        with pytest.raises(ProviderProfileError):
            normalize_google(userinfo)


class TestAppleAdapter:
    def test_name_from_user_form_json(self) -> None:
        form = json.dumps({"name": {"firstName": "Ada", "lastName": "Kay"}, "email": "a@x.com"})
        profile = normalize_apple({"sub": "a-1", "email": "a@x.com", "email_verified": "true"}, form)
        assert profile.provider == "apple"
        assert profile.given_name == "Ada"
        assert profile.family_name == "Kay"
        assert profile.avatar_url is None

    def test_missing_email_verified_allowed(self) -> None:
        assert normalize_apple({"sub": "a-1", "email": "a@x.com"}).email == "a@x.com"

    def test_explicit_false_refused(self) -> None:
        with pytest.raises(ProviderProfileError):
            normalize_apple({"sub": "a-1", "email": "a@x.com", "email_verified": "false"})

    def test_bad_user_form_ignored(self) -> None:
        profile = normalize_apple({"sub": "a-1", "email": "a@x.com"}, "{not json")
        assert profile.given_name == ""

    def test_missing_subject_refused(self) -> None:
        with pytest.raises(ProviderProfileError):
            normalize_apple({"email": "a@x.com"})

    def test_registry_lists_both(self) -> None:
        assert set(PROVIDER_ADAPTERS) == {"google", "apple"}
