"""
auth/oauth.py -- Authlib OAuth/OIDC provider configuration.

build_oauth_registry() reads the settings and registers only providers whose
credentials are fully configured. The API lifespan builds the registry once
and keeps it on app.state.oauth.

Security notes:
  [H1] Email verification is enforced by the adapters in auth/federation.py;
       get_provider_profile() never bypasses them.

  OAuth state (CSRF protection) is handled by authlib via Starlette
  SessionMiddleware, which stores it between the authorization redirect and
  the callback.

Supported providers:
  google -- OIDC discovery, authorization code flow.
  apple  -- OIDC discovery, authorization code flow with response_mode=form_post.
            Apple has no static client secret: it expects an ES256 JWT signed
            with the developer key, built here with python-jose.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import time

from authlib.integrations.starlette_client import OAuth
from jose import jwt

from auth.errors import ProviderProfileError
from auth.federation import PROVIDER_ADAPTERS
from auth.models import ProviderProfile
from core.config import Settings

logger = logging.getLogger("tradesauth.auth.oauth")

_APPLE_AUDIENCE = "https://appleid.apple.com"
# Apple rejects client secrets valid for longer than six months.
_APPLE_SECRET_LIFETIME = 15_777_000


def _google_enabled(settings: Settings) -> bool:
    return bool(settings.google_client_id and settings.google_client_secret)


def _apple_enabled(settings: Settings) -> bool:
    return bool(
        settings.apple_client_id and settings.apple_team_id and settings.apple_key_id and settings.apple_private_key
    )


def build_apple_client_secret(settings: Settings, now: int | None = None) -> str:
    """Return the ES256-signed JWT Apple accepts in place of a client secret."""
    issued = int(now if now is not None else time.time())
    claims = {
        "iss": settings.apple_team_id,
        "iat": issued,
        "exp": issued + _APPLE_SECRET_LIFETIME,
        "aud": _APPLE_AUDIENCE,
        "sub": settings.apple_client_id,
    }
    # .env files usually carry the PEM with literal "\n" sequences.
    private_key = settings.apple_private_key.replace("\\n", "\n")
    return jwt.encode(claims, private_key, algorithm="ES256", headers={"kid": settings.apple_key_id})


def build_oauth_registry(settings: Settings) -> OAuth:
    """Return an authlib OAuth registry with every configured provider registered."""
    oauth = OAuth()

    if _google_enabled(settings):
        oauth.register(
            name="google",
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
            client_kwargs={"scope": "openid email profile"},
        )
        logger.info("Google OAuth provider registered")

    if _apple_enabled(settings):
        oauth.register(
            name="apple",
            client_id=settings.apple_client_id,
            client_secret=build_apple_client_secret(settings),
            server_metadata_url=f"{_APPLE_AUDIENCE}/.well-known/openid-configuration",
            authorize_params={"response_mode": "form_post"},
            client_kwargs={"scope": "openid email name", "token_endpoint_auth_method": "client_secret_post"},
        )
        logger.info("Apple OAuth provider registered")

    return oauth


def get_enabled_providers(settings: Settings) -> list[dict]:
    """Return {"name", "label"} for every provider with complete credentials."""
    providers: list[dict] = []
    if _google_enabled(settings):
        providers.append({"name": "google", "label": "Google"})
    if _apple_enabled(settings):
        providers.append({"name": "apple", "label": "Apple"})
    return providers


def get_provider_profile(provider: str, token: dict, user_form: dict | str | None = None) -> ProviderProfile:
    """Normalize an authlib token response into a ProviderProfile.

    Both providers are OIDC, so authlib has already validated the id_token
    and put its claims under token["userinfo"].

    Raises:
        ProviderProfileError: unknown provider, no userinfo, or a profile the
            adapter refuses (missing or unverified email).
    """
    adapter = PROVIDER_ADAPTERS.get(provider)
    if adapter is None:
        raise ProviderProfileError(f"Unknown OAuth provider: {provider!r}")
    userinfo = token.get("userinfo")
    if not userinfo:
        raise ProviderProfileError(f"{provider}: no userinfo in token response.")
    return adapter(dict(userinfo), user_form)
