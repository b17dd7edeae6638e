#!/usr/bin/env python3
"""
Job board authorization service -- administrative command line.

Usage:
  python main.py seed
  python main.py create-admin --email admin@example.com
  python main.py create-admin --email admin@example.com --password 'Str0ng!Passw0rd'
  python main.py cleanup-tokens

Environment variables (see core/config.py):
  DATABASE_URL  SQLAlchemy URL of the credential database.
  SECRET_KEY    Required unless DEBUG=true.
"""

import argparse
import getpass
import sys

from auth.errors import ConflictError, WeakPasswordError
from auth.models import User
from auth.revocation import TokenRevocationRegistry
from auth.store import CredentialStore
from auth.tokens import validate_password_strength
from core.config import get_settings


def _cmd_seed(store: CredentialStore, args: argparse.Namespace) -> int:
    store.seed_defaults()
    print(f"  Seeded {len(store.list_permissions())} permissions and {len(store.list_roles())} roles.")
    return 0


def _cmd_create_admin(store: CredentialStore, args: argparse.Namespace) -> int:
    """Create a super-admin. Prompts for the password when --password is omitted."""
    store.seed_defaults()
    password = args.password or getpass.getpass("Password: ")
    try:
        validate_password_strength(password)
    except WeakPasswordError as e:
        print(f"  [!] {e.message}")
        return 1

    user = User(email=args.email, first_name=args.first_name, last_name=args.last_name)
    user.set_password(password)
    role = store.get_role_by_code("super-admin")
    try:
        uid = store.create_user(user, role_ids=[role.id])
    except ConflictError as e:
        print(f"  [!] {e.message}")
        return 1
    print(f"  Created super-admin {args.email} (id {uid}).")
    return 0


def _cmd_cleanup_tokens(store: CredentialStore, args: argparse.Namespace) -> int:
    removed = TokenRevocationRegistry(store.engine).cleanup_expired()
    print(f"  Removed {removed} expired revocation records.")
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Job board authorization service administration.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--database-url",
        metavar="URL",
        help="Override DATABASE_URL for this command.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("seed", help="Create default permissions and system roles.")

    admin = sub.add_parser("create-admin", help="Create a user holding the super-admin role.")
    admin.add_argument("--email", required=True)
    admin.add_argument("--password", help="Omit to be prompted (keeps it out of shell history).")
    admin.add_argument("--first-name", default="")
    admin.add_argument("--last-name", default="")

    sub.add_parser("cleanup-tokens", help="Delete revocation records whose token has expired.")
    return parser


_COMMANDS = {
    "seed": _cmd_seed,
    "create-admin": _cmd_create_admin,
    "cleanup-tokens": _cmd_cleanup_tokens,
}


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    store = CredentialStore(args.database_url or get_settings().database_url)
    try:
        return _COMMANDS[args.command](store, args)
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
