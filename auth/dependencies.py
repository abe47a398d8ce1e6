"""
auth/dependencies.py -- FastAPI Depends() helpers for request authorization.

Thin adapters over auth.guard.AuthGuard, which lives on app.state.guard:

  try_get_auth_context()   -- optional auth; None when unauthenticated.
  get_auth_context()       -- required auth; HTTP 401 otherwise.
  get_current_user()       -- required auth, returns just the User.
  require_roles(*roles)    -- dependency factory; 401 / 403.
  require_verified_email() -- required auth + verified email; 401 / 403.

Only the Authorization: Bearer header is accepted. The fresh user record and
the original token claims are also stored on request.state for downstream
code that does not use Depends().

Layer rule: this module may import from fastapi because it is part of the
FastAPI dependency injection system. It does not import from api/.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Depends, HTTPException, Request

from auth.errors import AuthError
from auth.guard import AuthGuard
from auth.models import AuthContext, User


def _http_error(exc: AuthError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.to_detail())


def _attach(request: Request, context: AuthContext | None) -> AuthContext | None:
    request.state.user = context.user if context else None
    request.state.token_claims = context.claims if context else None
    return context


def try_get_auth_context(request: Request) -> AuthContext | None:
    """Authenticate if possible; never rejects the request."""
    guard: AuthGuard = request.app.state.guard
    return _attach(request, guard.optional_authenticated(request.headers.get("Authorization")))


def get_auth_context(request: Request) -> AuthContext:
    """Require authentication. Raises HTTP 401 if the request is not authenticated."""
    guard: AuthGuard = request.app.state.guard
    try:
        context = guard.require_authenticated(request.headers.get("Authorization"))
    except AuthError as exc:
        raise _http_error(exc) from exc
    return _attach(request, context)


def get_current_user(context: AuthContext = Depends(get_auth_context)) -> User:
    """Use as a FastAPI dependency:
    @router.get("/protected")
    async def route(user: User = Depends(get_current_user)): ...
    """
    return context.user


def require_roles(*roles: str) -> Callable[..., AuthContext]:
    """Build a dependency that admits only the given user types.

    Usage:
        @router.post("/admin-only")
        async def route(ctx: AuthContext = Depends(require_roles("admin"))): ...
    """

    def _dependency(context: AuthContext = Depends(get_auth_context)) -> AuthContext:
        try:
            return AuthGuard.require_role(context, roles)
        except AuthError as exc:
            raise _http_error(exc) from exc

    return _dependency


def require_verified_email(context: AuthContext = Depends(get_auth_context)) -> AuthContext:
    try:
        return AuthGuard.require_email_verified(context)
    except AuthError as exc:
        raise _http_error(exc) from exc
