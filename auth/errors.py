"""
auth/errors.py -- Typed error taxonomy for the auth core.

Every failure the core can report is an AuthError subclass carrying a stable
machine-readable code and the HTTP status the API layer should use. Callers
catch the specific class they care about instead of parsing messages.

Information-leak policy:
  InvalidCredentialsError and SessionInvalidError always carry the same fixed
  message, whatever check actually failed. Unknown email, wrong password and
  suspended account are indistinguishable from the outside, as are "no such
  session", "hash mismatch" and "expired".

  PolicyViolationError is the exception: it lists every violated rule so a
  legitimate user can fix their password in one round trip.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for every error raised by the auth core."""

    code: str = "auth_error"
    status_code: int = 400
    message: str = "Authentication error."
    retryable: bool = False

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)

    def to_detail(self) -> dict:
        return {"code": self.code, "message": self.message}


class PolicyViolationError(AuthError):
    """Password does not satisfy the configured policy."""

    code = "password_policy"
    status_code = 400
    message = "Password does not meet security requirements."

    def __init__(self, violations: list[str]) -> None:
        self.violations = list(violations)
        super().__init__(". ".join(self.violations) or self.message)

    def to_detail(self) -> dict:
        return {"code": self.code, "message": self.message, "violations": self.violations}


class InvalidCredentialsError(AuthError):
    code = "invalid_credentials"
    status_code = 401
    message = "Invalid email or password."


# ---------------------------------------------------------------------------
# Token extraction / verification
# ---------------------------------------------------------------------------


class TokenError(AuthError):
    code = "token_error"
    status_code = 401
    message = "Invalid token."


class MalformedHeaderError(TokenError):
    code = "malformed_header"
    message = "Authorization header must be 'Bearer <token>'."


class TokenInvalidError(TokenError):
    code = "token_invalid"
    message = "Token is invalid."


class TokenExpiredError(TokenError):
    code = "token_expired"
    message = "Token has expired."


# ---------------------------------------------------------------------------
# Sessions and request authorization
# ---------------------------------------------------------------------------


class SessionInvalidError(AuthError):
    code = "session_invalid"
    status_code = 401
    message = "Invalid or expired session."


class UnauthorizedError(AuthError):
    code = "unauthorized"
    status_code = 401
    message = "Authentication required."


class ForbiddenError(AuthError):
    code = "forbidden"
    status_code = 403
    message = "Insufficient permissions."


# ---------------------------------------------------------------------------
# Accounts and federation
# ---------------------------------------------------------------------------


class EmailAlreadyRegisteredError(AuthError):
    code = "email_exists"
    status_code = 409
    message = "Email already registered."


class ProviderProfileError(AuthError):
    """The identity provider returned a profile we cannot trust or use."""

    code = "oauth_profile"
    status_code = 400
    message = "Identity provider profile is incomplete or unverified."


class StoreUnavailableError(AuthError):
    """The backing store failed or timed out. Safe for the caller to retry."""

    code = "store_unavailable"
    status_code = 503
    message = "Authentication store is temporarily unavailable."
    retryable = True
