"""
auth/service.py -- AuthService, the facade the rest of the system calls.

Composes the hasher, token issuer, session manager and identity federation
into the user-facing operations: register, login, refresh, logout, provider
sign-in, password change, and logout everywhere.

Security:
  [C1] login() always runs bcrypt, against a dummy hash when the email is
       unknown, so response time does not reveal which emails exist. Unknown
       email, wrong password and inactive account all raise the same
       InvalidCredentialsError.

  logout() never raises. A caller that is trying to log out gets success
  whether the token was valid, already revoked, or garbage.

  change_password() revokes every session of the user, so a stolen refresh
  token stops working as soon as the owner changes their password.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from auth.errors import AuthError, InvalidCredentialsError, TokenError
from auth.federation import IdentityFederation
from auth.models import AccountStatus, DeviceInfo, LoginResult, ProviderProfile, RefreshResult, User, UserType
from auth.passwords import PasswordHasher
from auth.sessions import SessionManager
from auth.store import UserStore
from auth.tokens import TokenIssuer

logger = logging.getLogger("tradesauth.auth.service")

# Roles a user may pick at self sign-up. admin/support are assigned out of band.
SELF_REGISTER_ROLES = (UserType.customer.value, UserType.contractor.value)


@dataclass
class AuthService:
    users: UserStore
    sessions: SessionManager
    issuer: TokenIssuer
    hasher: PasswordHasher
    federation: IdentityFederation

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _grant(self, user: User, device_info: DeviceInfo | None) -> LoginResult:
        grant = self.sessions.create_session(user, device_info)
        return LoginResult(
            user=user,
            access_token=self.issuer.issue_access(user),
            refresh_token=grant.refresh_token,
            expires_at=grant.expires_at,
            session_id=grant.session_id,
        )

    def _authenticate(self, email: str, password: str) -> User:
        user = self.users.find_by_email(email)
        if user is None:
            # Equalize timing -- do NOT return before running bcrypt [C1]
            self.hasher.verify(password, self.hasher.dummy_hash)
            raise InvalidCredentialsError()
        if not self.hasher.verify(password, user.password_hash):
            raise InvalidCredentialsError()
        if not user.is_active:
            raise InvalidCredentialsError()
        return user

    # ------------------------------------------------------------------
    # Core flows
    # ------------------------------------------------------------------

    def login(self, email: str, password: str, device_info: DeviceInfo | None = None) -> LoginResult:
        """Check credentials, stamp last_login_at, open a session, mint an access token."""
        try:
            user = self._authenticate(email, password)
        except InvalidCredentialsError:
            logger.info("Failed login attempt")
            raise
        self.users.update_last_login(user.id)
        return self._grant(user, device_info)

    def refresh(self, refresh_token: str) -> RefreshResult:
        """Mint a new access token from a live refresh session.

        The refresh token itself is not rotated; it stays valid until its
        session expires or is revoked.
        """
        _session, user = self.sessions.validate_session(refresh_token)
        return RefreshResult(access_token=self.issuer.issue_access(user), user=user)

    def logout(self, refresh_token: str) -> None:
        """Revoke the session behind refresh_token. Never raises."""
        try:
            claims = self.sessions.issuer.verify_refresh(refresh_token)
            self.sessions.revoke_session(claims.session_id)
        except TokenError:
            logger.debug("Logout with unverifiable refresh token ignored")
        except AuthError as exc:
            logger.warning("Logout could not revoke session: %s", exc.code)

    # ------------------------------------------------------------------
    # Account flows
    # ------------------------------------------------------------------

    def register(
        self,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        user_type: str = UserType.customer.value,
        phone: str | None = None,
        device_info: DeviceInfo | None = None,
    ) -> LoginResult:
        """Create a password account and sign it in.

        The account starts active with an unverified email; routes that need
        a verified address gate on require_email_verified.

        Raises PolicyViolationError, EmailAlreadyRegisteredError, or
        ValueError for a role that cannot be self-assigned.
        """
        if user_type not in SELF_REGISTER_ROLES:
            raise ValueError(f"user_type must be one of {SELF_REGISTER_ROLES}")
        password_hash = self.hasher.hash(password)
        user_id = self.users.create_user(
            User(
                email=email,
                password_hash=password_hash,
                user_type=user_type,
                account_status=AccountStatus.active.value,
                first_name=first_name,
                last_name=last_name,
                phone=phone,
            )
        )
        user = self.users.find_by_id(user_id)
        logger.info("Registered user %s (%s)", user_id, user_type)
        return self._grant(user, device_info)

    def sign_in_with_provider(self, profile: ProviderProfile, device_info: DeviceInfo | None = None) -> LoginResult:
        """Federate a provider profile to a local user and open a session for it."""
        user = self.federation.handle_provider_callback(profile)
        if not user.is_active:
            raise InvalidCredentialsError()
        self.users.update_last_login(user.id)
        return self._grant(user, device_info)

    def change_password(self, user_id: str, current_password: str, new_password: str) -> int:
        """Replace the password and revoke every session. Returns sessions revoked.

        Raises InvalidCredentialsError if current_password is wrong and
        PolicyViolationError if new_password breaks the policy.
        """
        user = self.users.find_active_by_id(user_id)
        if user is None or not self.hasher.verify(current_password, user.password_hash):
            raise InvalidCredentialsError()
        self.users.update_password(user_id, self.hasher.hash(new_password))
        return self.sessions.revoke_all_for_user(user_id)

    def logout_everywhere(self, user_id: str) -> int:
        return self.sessions.revoke_all_for_user(user_id)


def build_auth_service(settings, users: UserStore, session_store) -> AuthService:
    """Wire an AuthService from settings and two stores."""
    issuer = TokenIssuer.from_settings(settings)
    hasher = PasswordHasher.from_settings(settings)
    return AuthService(
        users=users,
        sessions=SessionManager(session_store, users, issuer),
        issuer=issuer,
        hasher=hasher,
        federation=IdentityFederation(users, hasher),
    )
