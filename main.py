#!/usr/bin/env python3
"""
ResourceHub auth -- operator CLI.

Self-registration only creates student and faculty accounts, and only a
super_admin can grant admin. This CLI creates the first super_admin and runs
housekeeping against the same database the API uses.

Usage:
  python main.py create-super-admin --name "Root Admin" --email root@x.edu --department CSE
  python main.py purge-tokens
  python main.py list-users

Environment variables (see core/config.py):
  SECRET_KEY     Signing secret, at least 32 characters. Required unless DEBUG=true.
  DATABASE_URL   SQLAlchemy URL of the auth database.
  BCRYPT_ROUNDS  Password hashing cost factor (default 10).
"""

import argparse
import getpass
import sys

from auth.ephemeral import EphemeralTokenStore
from auth.errors import AuthError
from auth.lifecycle import AccountService
from auth.models import Department
from auth.passwords import PasswordHasher
from auth.store import UserStore
from auth.tokens import SessionTokens
from core.config import get_settings


def _build_accounts() -> AccountService:
    settings = get_settings()
    timeout = settings.storage_timeout_seconds
    store = UserStore(settings.database_url, timeout=timeout)
    ephemeral = EphemeralTokenStore(settings.database_url, settings.secret_key, timeout=timeout)
    return AccountService(
        store,
        SessionTokens(settings.secret_key, default_ttl=settings.token_expire_seconds),
        ephemeral,
        PasswordHasher(rounds=settings.bcrypt_rounds),
    )


def _read_password() -> str:
    """Prompt twice without echo. Never accept the password as an argument (shell history)."""
    first = getpass.getpass("  Password: ")
    second = getpass.getpass("  Repeat password: ")
    if first != second:
        print("  [!] Passwords do not match.")
        sys.exit(1)
    return first


def cmd_create_super_admin(args: argparse.Namespace) -> int:
    accounts = _build_accounts()
    try:
        user = accounts.bootstrap_super_admin(args.name, args.email, _read_password(), args.department)
    except AuthError as exc:
        print(f"  [!] {exc.message}")
        return 1
    finally:
        accounts.store.close()
        accounts.ephemeral.close()
    print(f"  Super admin created: id={user.id} email={user.email}")
    return 0


def cmd_purge_tokens(args: argparse.Namespace) -> int:
    accounts = _build_accounts()
    try:
        removed = accounts.ephemeral.purge_expired()
    finally:
        accounts.store.close()
        accounts.ephemeral.close()
    print(f"  Removed {removed} expired token(s).")
    return 0


def cmd_list_users(args: argparse.Namespace) -> int:
    accounts = _build_accounts()
    try:
        users = accounts.list_users()
    finally:
        accounts.store.close()
        accounts.ephemeral.close()
    if not users:
        print("  No users.")
        return 0
    for u in users:
        member_id = u.student_id or u.faculty_id or "-"
        status = "active" if u.is_active else "suspended"
        print(f"  {u.id:>5}  {u.role.value:<12} {member_id:<10} {status:<9} {u.email}")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="resourcehub-auth",
        description="Operator commands for the ResourceHub auth service.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    create = sub.add_parser("create-super-admin", help="Create the first super_admin account")
    create.add_argument("--name", required=True, help="Display name (3-50 characters)")
    create.add_argument("--email", required=True, help="Login email")
    create.add_argument(
        "--department",
        required=True,
        choices=[d.value for d in Department],
        help="Department code",
    )
    create.set_defaults(func=cmd_create_super_admin)

    purge = sub.add_parser("purge-tokens", help="Delete expired verification / reset / refresh tokens")
    purge.set_defaults(func=cmd_purge_tokens)

    listing = sub.add_parser("list-users", help="Print all accounts")
    listing.set_defaults(func=cmd_list_users)

    args = parser.parse_args()
    if not getattr(args, "func", None):
        parser.print_help()
        return
    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
