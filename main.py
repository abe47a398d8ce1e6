#!/usr/bin/env python3
"""
Trades Auth -- maintenance commands for the auth store.

Usage:
  python main.py cleanup-sessions
  python main.py revoke-sessions --user-id 3f0c...
  python main.py create-staff --email ops@example.com --role admin --first-name Ops --last-name Team

Environment variables:
  DATABASE_URL                              Store to operate on (default sqlite:///tradesauth.db).
  ACCESS_TOKEN_SECRET, REFRESH_TOKEN_SECRET Required unless DEBUG=true.

cleanup-sessions is safe to run from cron alongside the API: it is the same
delete-where-expired the API's background task performs.
"""

import argparse
import getpass
import logging
import sys
from datetime import datetime, timezone

from auth.errors import AuthError, PolicyViolationError
from auth.models import AccountStatus, User, UserType
from auth.service import build_auth_service
from auth.store import SessionStore, UserStore, create_store_engine
from core.config import get_settings

logger = logging.getLogger("tradesauth.cli")

_STAFF_ROLES = (UserType.admin.value, UserType.support.value)


def _build():
    settings = get_settings()
    engine = create_store_engine(settings.database_url, settings.store_timeout_seconds)
    users = UserStore(engine=engine)
    service = build_auth_service(settings, users, SessionStore(engine=engine))
    return engine, service


def cmd_cleanup_sessions(args: argparse.Namespace) -> int:
    engine, service = _build()
    try:
        count = service.sessions.cleanup_expired()
    finally:
        engine.dispose()
    print(f"  Removed {count} expired session(s).")
    return 0


def cmd_revoke_sessions(args: argparse.Namespace) -> int:
    engine, service = _build()
    try:
        count = service.logout_everywhere(args.user_id)
    finally:
        engine.dispose()
    print(f"  Revoked {count} session(s) for user {args.user_id}.")
    return 0


def cmd_create_staff(args: argparse.Namespace) -> int:
    """Create an admin or support account. These roles cannot self-register."""
    password = args.password or getpass.getpass("  Password: ")
    engine, service = _build()
    try:
        password_hash = service.hasher.hash(password)
        user_id = service.users.create_user(
            User(
                email=args.email,
                password_hash=password_hash,
                user_type=args.role,
                account_status=AccountStatus.active.value,
                first_name=args.first_name,
                last_name=args.last_name,
                email_verified_at=datetime.now(timezone.utc),
            )
        )
    except PolicyViolationError as exc:
        for violation in exc.violations:
            print(f"  [!] {violation}")
        return 1
    finally:
        engine.dispose()
    print(f"  Created {args.role} {args.email} ({user_id}).")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tradesauth", description="Trades Auth maintenance commands.")
    sub = parser.add_subparsers(dest="command", required=True)

    cleanup = sub.add_parser("cleanup-sessions", help="Delete expired sessions.")
    cleanup.set_defaults(func=cmd_cleanup_sessions)

    revoke = sub.add_parser("revoke-sessions", help="Log a user out everywhere.")
    revoke.add_argument("--user-id", required=True)
    revoke.set_defaults(func=cmd_revoke_sessions)

    staff = sub.add_parser("create-staff", help="Create an admin or support account.")
    staff.add_argument("--email", required=True)
    staff.add_argument("--role", choices=_STAFF_ROLES, default=UserType.admin.value)
    staff.add_argument("--first-name", default="")
    staff.add_argument("--last-name", default="")
    staff.add_argument("--password", help="Omit to be prompted (recommended).")
    staff.set_defaults(func=cmd_create_staff)
    return parser


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)-5s %(name)s %(message)s")
    args = build_parser().parse_args(argv)
    try:
        return args.func(args)
    except AuthError as exc:
        print(f"  [!] {exc.message}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
