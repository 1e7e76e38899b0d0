#!/usr/bin/env python3
"""
Backoffice -- operator CLI for the CMS authentication service.

Usage:
  python main.py create-admin --email admin@example.com --password '...' [--name "Ada"]
  python main.py cleanup
  python main.py serve [--host 127.0.0.1] [--port 8000] [--reload]

Environment variables (or .env):
  SECRET_KEY     Required in production. Keys every stored token hash.
  DATABASE_URL   SQLAlchemy URL (default: sqlite file backoffice.db next to this file).
  ENVIRONMENT    development | test | production
"""

import argparse
import sys
from typing import Optional

from auth.invitations import InvitationService
from auth.models import User, normalize_email
from auth.passwords import hash_password
from auth.policy import validate_password
from auth.sessions import SessionManager
from auth.store import AuthStore
from core.clock import to_iso, utcnow
from core.config import get_settings


class CliError(Exception):
    """A command failed for a reason the operator can fix."""


def create_admin(store: AuthStore, email: str, password: str, name: Optional[str] = None) -> int:
    """Seed a super_admin account. Returns the new user id.

    The password goes through the same strength policy as invitation
    acceptance. Raises CliError on a weak password or an existing email.
    """
    check = validate_password(password)
    if not check.valid:
        raise CliError("Password rejected:\n" + "\n".join(f"  - {e}" for e in check.errors))

    normalized = normalize_email(email)
    if store.get_user_by_email(normalized) is not None:
        raise CliError(f"A user with email {normalized} already exists.")

    user = User(
        email=normalized,
        role="super_admin",
        password_hash=hash_password(password),
        name=(name or "").strip() or None,
    )
    return store.create_user(user, now=to_iso(utcnow()))


def run_cleanup(store: AuthStore, secret_key: str) -> tuple[int, int]:
    """Delete expired sessions and expired, unaccepted invitations. Returns both counts."""
    sessions = SessionManager(store, secret_key).cleanup_expired()
    invitations = InvitationService(store, secret_key).cleanup_expired()
    return sessions, invitations


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="backoffice",
        description="Operator commands for the CMS backoffice authentication service.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-admin --email admin@example.com --password 'Str0ng!Passphrase#2024'
  python main.py cleanup
  python main.py serve --reload
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    p_admin = sub.add_parser("create-admin", help="Create a super_admin account")
    p_admin.add_argument("--email", required=True, help="Login email for the new account")
    p_admin.add_argument("--password", required=True, help="Password (must satisfy the strength policy)")
    p_admin.add_argument("--name", default=None, help="Display name")

    sub.add_parser("cleanup", help="Delete expired sessions and invitations")

    p_serve = sub.add_parser("serve", help="Run the API with uvicorn")
    p_serve.add_argument("--host", default="127.0.0.1")
    p_serve.add_argument("--port", type=int, default=8000)
    p_serve.add_argument("--reload", action="store_true", help="Auto-reload on code changes (development)")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    if args.command == "serve":
        import uvicorn

        uvicorn.run("asgi:app", host=args.host, port=args.port, reload=args.reload)
        return 0

    settings = get_settings()
    store = AuthStore(settings.database_url)
    try:
        if args.command == "create-admin":
            try:
                user_id = create_admin(store, args.email, args.password, args.name)
            except CliError as e:
                print(f"  [!] {e}", file=sys.stderr)
                return 1
            print(f"  super_admin created (id={user_id}).")
        elif args.command == "cleanup":
            sessions, invitations = run_cleanup(store, settings.secret_key)
            print(f"  Removed {sessions} expired session(s) and {invitations} expired invitation(s).")
    finally:
        store.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
