#!/usr/bin/env python3
"""
Credential Authority -- operator CLI.

Works directly against the credential store, bypassing session checks. Use it
to bootstrap the first ADMIN (public registration only creates USER accounts)
and for recovery when no admin can log in.

Usage:
  python main.py create-user alice
  python main.py create-user root --admin
  echo "s3cret" | python main.py create-user ci-bot --password-stdin
  python main.py set-authority alice admin
  python main.py delete-user alice
  python main.py --database-url sqlite:///other.db create-user bob

Environment variables:
  DATABASE_URL   Credential store URL (default: authority/credentials.db)
  BCRYPT_ROUNDS  bcrypt cost factor for new passwords (default: 12)
"""

import argparse
import getpass
import sys
from typing import Optional

from authority.exceptions import AuthorityError, UserNotFound
from authority.hashing import BcryptHasher
from authority.models import AuthorityLevel
from authority.store import CredentialStore
from core.config import get_settings


def _read_password(from_stdin: bool) -> Optional[str]:
    """Read a new password from stdin (first line) or an interactive prompt.

    Returns None when the prompt entries do not match or the password is empty.
    """
    if from_stdin:
        password = sys.stdin.readline().rstrip("\r\n")
    else:
        password = getpass.getpass("Password: ")
        if password != getpass.getpass("Repeat password: "):
            print("  [!] Passwords do not match.")
            return None
    if not password:
        print("  [!] Password must not be empty.")
        return None
    return password


def _create_user(store: CredentialStore, hasher: BcryptHasher, args: argparse.Namespace) -> int:
    password = _read_password(args.password_stdin)
    if password is None:
        return 1
    authority = AuthorityLevel.ADMIN if args.admin else AuthorityLevel.USER
    store.create(args.username, hasher.hash(password), authority)
    print(f"  Created {args.username} ({authority.name}).")
    return 0


def _set_authority(store: CredentialStore, args: argparse.Namespace) -> int:
    authority = AuthorityLevel.parse(args.authority)
    if not store.update_authority(args.username, authority):
        raise UserNotFound(args.username)
    print(f"  {args.username} is now {authority.name}.")
    return 0


def _delete_user(store: CredentialStore, args: argparse.Namespace) -> int:
    if not store.delete(args.username):
        raise UserNotFound(args.username)
    print(f"  Deleted {args.username}.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="credential-authority",
        description="Operator tooling for the credential store.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-user root --admin
  python main.py set-authority alice admin
  python main.py delete-user alice
        """,
    )
    parser.add_argument(
        "--database-url",
        metavar="URL",
        default=None,
        help="Credential store URL (overrides DATABASE_URL)",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    create = sub.add_parser("create-user", help="Create a credential")
    create.add_argument("username")
    create.add_argument("--admin", action="store_true", help="Grant ADMIN authority (default: USER)")
    create.add_argument(
        "--password-stdin",
        action="store_true",
        help="Read the password from the first line of stdin instead of prompting",
    )

    set_auth = sub.add_parser("set-authority", help="Change a credential's authority level")
    set_auth.add_argument("username")
    set_auth.add_argument("authority", choices=["user", "admin"], type=str.lower)

    delete = sub.add_parser("delete-user", help="Delete a credential")
    delete.add_argument("username")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1

    settings = get_settings()
    store = CredentialStore(args.database_url or settings.database_url, timeout=settings.storage_timeout_seconds)
    try:
        if args.command == "create-user":
            return _create_user(store, BcryptHasher(rounds=settings.bcrypt_rounds), args)
        if args.command == "set-authority":
            return _set_authority(store, args)
        return _delete_user(store, args)
    except AuthorityError as exc:
        print(f"  [!] {exc.message}")
        return 1
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
