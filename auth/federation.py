"""
auth/federation.py -- Map identity-provider profiles onto local users.

Two layers:
  Adapters (normalize_google, normalize_apple) turn each provider's payload
  into a ProviderProfile. Provider quirks stay in the adapters.

  IdentityFederation.handle_provider_callback() only ever sees a
  ProviderProfile, so adding a provider never touches it.

Linking rule: first email wins. If a local account already exists for the
profile's email it is returned unchanged, whichever provider (or password
sign-up) created it. Accounts are never merged.

Security notes:
  [H1] An email the provider does not vouch for is refused. Otherwise an
       attacker could add a victim's address to their provider account and
       sign in as the victim here.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from auth.errors import EmailAlreadyRegisteredError, ProviderProfileError, StoreUnavailableError
from auth.models import AccountStatus, ProviderProfile, User, UserType

if TYPE_CHECKING:
    from auth.passwords import PasswordHasher
    from auth.store import UserStore

logger = logging.getLogger("tradesauth.auth.federation")


def _is_true(value) -> bool:
    # Apple sends "true"/"false" strings inside the id_token; Google sends bools.
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


# ---------------------------------------------------------------------------
# Provider adapters
# ---------------------------------------------------------------------------


def normalize_google(userinfo: dict, user_form: dict | str | None = None) -> ProviderProfile:
    """Normalize a Google OIDC userinfo dict. user_form is unused (Apple only).

    Accepts {sub|id, email, email_verified, given_name, family_name, picture}.
    Google always sends email_verified; a missing or false value is refused.
    """
    subject = userinfo.get("sub") or userinfo.get("id")
    email = userinfo.get("email")
    if not subject or not email:
        raise ProviderProfileError("google: missing email or subject in profile.")
    if not _is_true(userinfo.get("email_verified", False)):
        raise ProviderProfileError("google: email is not verified.")
    return ProviderProfile(
        provider="google",
        subject_id=str(subject),
        email=email,
        given_name=userinfo.get("given_name") or "",
        family_name=userinfo.get("family_name") or "",
        avatar_url=userinfo.get("picture"),
        email_verified=True,
    )


def normalize_apple(claims: dict, user_form: dict | str | None = None) -> ProviderProfile:
    """Normalize Sign in with Apple id_token claims.

    Apple puts {sub, email, email_verified} in the id_token and sends the
    user's name only once, on first authorization, as a separate JSON "user"
    form field: {"name": {"firstName": ..., "lastName": ...}}. Either may be
    passed in. email_verified is sometimes omitted; only an explicit false is
    refused.
    """
    if isinstance(user_form, str):
        try:
            user_form = json.loads(user_form)
        except ValueError:
            user_form = None
    extra = user_form if isinstance(user_form, dict) else {}

    subject = claims.get("sub") or claims.get("subjectId")
    email = claims.get("email") or extra.get("email")
    if not subject or not email:
        raise ProviderProfileError("apple: missing email or subject in profile.")
    if "email_verified" in claims and not _is_true(claims["email_verified"]):
        raise ProviderProfileError("apple: email is not verified.")

    name = claims.get("name") or extra.get("name") or {}
    return ProviderProfile(
        provider="apple",
        subject_id=str(subject),
        email=email,
        given_name=name.get("firstName") or "",
        family_name=name.get("lastName") or "",
        avatar_url=None,
        email_verified=True,
    )


# provider name -> adapter(claims, user_form); get_provider_profile dispatches here.
PROVIDER_ADAPTERS = {
    "google": normalize_google,
    "apple": normalize_apple,
}


# ---------------------------------------------------------------------------
# Federation
# ---------------------------------------------------------------------------


class IdentityFederation:
    def __init__(
        self,
        users: UserStore,
        hasher: PasswordHasher,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.users = users
        self.hasher = hasher
        self._clock = clock

    def handle_provider_callback(self, profile: ProviderProfile) -> User:
        """Return the local user for a provider profile, creating it if needed.

        New accounts are active customers with email_verified_at set to now
        and a random password nobody is ever shown (they sign in through the
        provider or reset it). Existing accounts are returned untouched.
        """
        if not profile.email or not profile.email_verified:
            raise ProviderProfileError()

        existing = self.users.find_by_email(profile.email)
        if existing is not None:
            return existing

        password_hash = self.hasher.hash(self.hasher.generate())
        new_user = User(
            email=profile.email,
            password_hash=password_hash,
            user_type=UserType.customer.value,
            account_status=AccountStatus.active.value,
            first_name=profile.given_name,
            last_name=profile.family_name,
            profile_image_url=profile.avatar_url,
            email_verified_at=self._clock(),
        )
        try:
            user_id = self.users.create_user(new_user)
        except EmailAlreadyRegisteredError:
            # Concurrent first sign-in for the same email; the other insert won.
            winner = self.users.find_by_email(profile.email)
            if winner is None:
                raise
            return winner

        logger.info("Created user %s from %s sign-in", user_id, profile.provider)
        created = self.users.find_by_id(user_id)
        if created is None:
            raise StoreUnavailableError("User not found after write.")
        return created
