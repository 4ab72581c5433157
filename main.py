#!/usr/bin/env python3
"""
ProjectGate -- administrative command line.

Operates directly on the auth database named by DATABASE_URL (default:
auth/projectgate.db). Useful for bootstrapping the first project OWNER,
since granting OWNER over HTTP already requires an OWNER.

Usage:
  python main.py create-user --email alice@example.com --name Alice
  python main.py grant-role PROJECT_ID alice@example.com OWNER
  python main.py revoke-role PROJECT_ID alice@example.com
  python main.py purge-sessions
  python main.py hash-password

Environment variables:
  DATABASE_URL    SQLAlchemy URL of the auth database.
  BCRYPT_COST     bcrypt work factor for create-user / hash-password (default 14).
  ENV             "production" enforces SESSION_SECRET, as the server does.
"""

from __future__ import annotations

import argparse
import getpass
import logging
import sys
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.errors import PasswordTooShort, StorageError
from auth.models import Role, User
from auth.passwords import PasswordHasher
from auth.sessions import SessionStore
from auth.store import AuthStore
from core.config import Settings, get_settings


def _read_password(given: Optional[str]) -> str:
    """Use --password when given, otherwise prompt twice without echo."""
    if given is not None:
        return given
    first = getpass.getpass("Password: ")
    second = getpass.getpass("Repeat password: ")
    if first != second:
        raise ValueError("Passwords do not match.")
    return first


def _resolve_user_id(store: AuthStore, who: str) -> Optional[str]:
    """Accept either an email address or a user ID."""
    user = store.get_user_by_email(who.lower()) if "@" in who else store.get_user_by_id(who)
    return user.id if user is not None else None


def cmd_create_user(args: argparse.Namespace, settings: Settings, store: AuthStore) -> int:
    hasher = PasswordHasher(cost=settings.bcrypt_cost)
    try:
        password = _read_password(args.password)
        hasher.validate_password(password)
    except (ValueError, PasswordTooShort) as e:
        print(f"  [!] {e}")
        return 1
    user = User(email=args.email.strip().lower(), name=args.name, password_hash=hasher.hash_password(password))
    try:
        user_id = store.create_user(user)
    except IntegrityError:
        print(f"  [!] A user with email '{user.email}' already exists.")
        return 1
    print(f"  Created user {user.email} ({user_id})")
    return 0


def cmd_grant_role(args: argparse.Namespace, settings: Settings, store: AuthStore) -> int:
    role = Role.parse(args.role)
    if role is None:
        print(f"  [!] Unknown role '{args.role}'. Expected one of: {', '.join(r.name for r in Role)}")
        return 1
    user_id = _resolve_user_id(store, args.user)
    if user_id is None:
        print(f"  [!] No user matches '{args.user}'.")
        return 1
    store.set_project_role(args.project_id, user_id, role.name)
    print(f"  {args.user} is now {role.name} on project {args.project_id}")
    return 0


def cmd_revoke_role(args: argparse.Namespace, settings: Settings, store: AuthStore) -> int:
    user_id = _resolve_user_id(store, args.user)
    if user_id is None or not store.remove_project_role(args.project_id, user_id):
        print(f"  [!] {args.user} has no role on project {args.project_id}.")
        return 1
    print(f"  Removed {args.user} from project {args.project_id}")
    return 0


def cmd_purge_sessions(args: argparse.Namespace, settings: Settings, store: AuthStore) -> int:
    try:
        removed = SessionStore(store, ttl=settings.session_ttl).purge_expired()
    except StorageError as e:
        print(f"  [!] {e}")
        return 1
    print(f"  Purged {removed} expired session(s).")
    return 0


def cmd_hash_password(args: argparse.Namespace, settings: Settings, store: AuthStore) -> int:
    """Print a bcrypt hash, e.g. for seeding fixtures."""
    hasher = PasswordHasher(cost=settings.bcrypt_cost)
    try:
        password = _read_password(args.password)
    except ValueError as e:
        print(f"  [!] {e}")
        return 1
    print(hasher.hash_password(password))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="projectgate",
        description="Administer ProjectGate users, project roles and sessions.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-user --email alice@example.com --name Alice
  python main.py grant-role 7f1c... alice@example.com owner
  DATABASE_URL=sqlite:///prod.db python main.py purge-sessions
        """,
    )
    sub = parser.add_subparsers(dest="command", required=True, metavar="COMMAND")

    p = sub.add_parser("create-user", help="Create a local account")
    p.add_argument("--email", required=True)
    p.add_argument("--name", required=True)
    p.add_argument("--password", help="Password (prompted when omitted)")
    p.set_defaults(func=cmd_create_user)

    p = sub.add_parser("grant-role", help="Set a user's role on a project")
    p.add_argument("project_id")
    p.add_argument("user", metavar="USER", help="Email address or user ID")
    p.add_argument("role", metavar="ROLE", help="VIEWER, MEMBER, ADMIN or OWNER (any case)")
    p.set_defaults(func=cmd_grant_role)

    p = sub.add_parser("revoke-role", help="Remove a user from a project")
    p.add_argument("project_id")
    p.add_argument("user", metavar="USER", help="Email address or user ID")
    p.set_defaults(func=cmd_revoke_role)

    p = sub.add_parser("purge-sessions", help="Delete expired session rows")
    p.set_defaults(func=cmd_purge_sessions)

    p = sub.add_parser("hash-password", help="Print a bcrypt hash for a password")
    p.add_argument("--password", help="Password (prompted when omitted)")
    p.set_defaults(func=cmd_hash_password)

    return parser


def main(argv: Optional[list[str]] = None, settings: Optional[Settings] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = settings or get_settings()
    store = AuthStore(settings.database_url)
    try:
        return args.func(args, settings, store)
    finally:
        store.close()


def run() -> None:
    """Console-script entry point."""
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s %(message)s")
    sys.exit(main())


if __name__ == "__main__":
    run()
