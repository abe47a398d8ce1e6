"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/register                 -- create account, returns tokens
  POST /api/v1/auth/login                    -- password login, returns tokens
  POST /api/v1/auth/refresh                  -- new access token from refresh token
  POST /api/v1/auth/logout                   -- revoke one session; always 200
  POST /api/v1/auth/logout-all               -- revoke every session (requires auth)
  POST /api/v1/auth/password                 -- change password, revokes sessions (requires auth)
  GET  /api/v1/auth/me                       -- current user (requires auth)
  GET  /api/v1/auth/sessions                 -- active device sessions (requires auth)
  GET  /api/v1/auth/providers                -- enabled OAuth providers (public)
  GET  /api/v1/auth/oauth/{provider}/login   -- redirect to provider
  GET|POST /api/v1/auth/oauth/{provider}/callback -- provider sign-in, returns tokens

Security:
  [H2] register and login are rate-limited per IP (LOGIN_RATE_LIMIT).
  [C1] AuthService.login() provides timing equalization -- never inline it.
  [M5] Cache-Control: no-store on every response that carries tokens.

AuthError subclasses raised by the service propagate to the exception handler
in api/main.py, which renders the standard error envelope.
"""

from __future__ import annotations

import logging

from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, Depends, HTTPException, Request, Response
from starlette.concurrency import run_in_threadpool

from api.limiter import limiter, login_rate_limit
from api.models import (
    DeviceInfoIn,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    OAuthProviderInfo,
    PasswordChangeRequest,
    RefreshRequest,
    RefreshResponse,
    RegisterRequest,
    RevokedResponse,
    SessionOut,
    UserOut,
)
from auth.dependencies import get_auth_context, get_current_user
from auth.models import AuthContext, DeviceInfo, User
from auth.oauth import get_enabled_providers, get_provider_profile
from auth.service import AuthService
from core.config import get_settings

logger = logging.getLogger("tradesauth.api.auth")

# Auth policy:
# - register, login, refresh, logout, providers, oauth/*: public
# - logout-all, password, me, sessions:                   requires auth (get_auth_context)
router = APIRouter()


def _service(request: Request) -> AuthService:
    return request.app.state.auth_service


def _device_info(request: Request, body: DeviceInfoIn | None = None) -> DeviceInfo:
    """Merge client-reported device metadata with what the request itself shows."""
    body = body or DeviceInfoIn()
    return DeviceInfo(
        device_type=body.device_type or request.headers.get("X-Device-Type") or "unknown",
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("User-Agent"),
        extra=dict(body.model_extra or {}),
    )


def _no_store(response: Response) -> None:
    response.headers["Cache-Control"] = "no-store"  # [M5]


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(login_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/register", response_model=LoginResponse, status_code=201)
def register(request: Request, response: Response, body: RegisterRequest) -> LoginResponse:
    """Create a customer or contractor account and sign it in.

    Password policy violations come back as 400 with every violated rule.
    A taken email is 409.
    """
    result = _service(request).register(
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        user_type=body.user_type.value,
        phone=body.phone,
        device_info=_device_info(request, body.device_info),
    )
    _no_store(response)
    return LoginResponse.from_result(result)


@limiter.limit(login_rate_limit)  # [H2]
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, response: Response, body: LoginRequest) -> LoginResponse:
    """Authenticate with email and password.

    Unknown email, wrong password and inactive account all return the same
    401 invalid_credentials error.
    """
    result = _service(request).login(body.email, body.password, _device_info(request, body.device_info))
    _no_store(response)
    return LoginResponse.from_result(result)


@router.post("/auth/refresh", response_model=RefreshResponse)
def refresh(request: Request, response: Response, body: RefreshRequest) -> RefreshResponse:
    """Exchange a refresh token for a new access token (401 session_invalid on failure)."""
    result = _service(request).refresh(body.refresh_token)
    _no_store(response)
    return RefreshResponse(access_token=result.access_token, user=UserOut.from_user(result.user))


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, body: RefreshRequest) -> MessageResponse:
    """Revoke the session behind the refresh token. Succeeds even for bad tokens."""
    _service(request).logout(body.refresh_token)
    return MessageResponse(message="Logged out successfully.")


@router.get("/auth/providers", response_model=list[OAuthProviderInfo])
async def list_providers() -> list[OAuthProviderInfo]:
    """Return the configured OAuth providers so clients can render sign-in buttons."""
    return [OAuthProviderInfo(**p) for p in get_enabled_providers(get_settings())]


# ---------------------------------------------------------------------------
# OAuth sign-in
# ---------------------------------------------------------------------------


def _oauth_client(request: Request, provider: str):
    client = request.app.state.oauth.create_client(provider)
    if client is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "OAuth provider not configured."},
        )
    return client


@router.get("/auth/oauth/{provider}/login")
async def oauth_login(request: Request, provider: str):
    """Redirect the browser to the provider's authorization page."""
    client = _oauth_client(request, provider)
    redirect_uri = request.url_for("oauth_callback", provider=provider)
    return await client.authorize_redirect(request, str(redirect_uri))


@router.api_route(
    "/auth/oauth/{provider}/callback",
    methods=["GET", "POST"],
    response_model=LoginResponse,
    name="oauth_callback",
)
async def oauth_callback(request: Request, response: Response, provider: str) -> LoginResponse:
    """Complete the provider flow, federate to a local account, and issue tokens.

    Apple posts the callback as a form (response_mode=form_post) and includes
    the user's name only on first authorization, in the "user" field.
    """
    client = _oauth_client(request, provider)
    try:
        token = await client.authorize_access_token(request)
    except OAuthError as exc:
        logger.warning("OAuth callback failed for %s: %s", provider, exc.error)
        raise HTTPException(
            status_code=400,
            detail={"code": "oauth_failed", "message": "Sign-in with the provider failed."},
        ) from exc

    user_form = None
    if request.method == "POST":
        form = await request.form()
        user_form = form.get("user")

    profile = get_provider_profile(provider, token, user_form)
    result = await run_in_threadpool(_service(request).sign_in_with_provider, profile, _device_info(request))
    _no_store(response)
    return LoginResponse.from_result(result)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=UserOut)
def me(current_user: User = Depends(get_current_user)) -> UserOut:
    """Return the current (freshly loaded) user."""
    return UserOut.from_user(current_user)


@router.get("/auth/sessions", response_model=list[SessionOut])
def list_sessions(request: Request, context: AuthContext = Depends(get_auth_context)) -> list[SessionOut]:
    """List the caller's unexpired sessions, most recently used first."""
    sessions = _service(request).sessions.list_sessions(context.user.id)
    return [SessionOut.from_session(s) for s in sessions]


@router.post("/auth/logout-all", response_model=RevokedResponse)
def logout_all(request: Request, context: AuthContext = Depends(get_auth_context)) -> RevokedResponse:
    """Revoke every session of the caller ("log out everywhere")."""
    count = _service(request).logout_everywhere(context.user.id)
    return RevokedResponse(message="All sessions revoked.", sessions_revoked=count)


@router.post("/auth/password", response_model=RevokedResponse)
def change_password(
    request: Request,
    body: PasswordChangeRequest,
    context: AuthContext = Depends(get_auth_context),
) -> RevokedResponse:
    """Change the caller's password. Every session, including this one, is revoked."""
    count = _service(request).change_password(context.user.id, body.current_password, body.new_password)
    return RevokedResponse(message="Password changed. Please sign in again.", sessions_revoked=count)
