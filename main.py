#!/usr/bin/env python3
"""
TokenGate -- operator command line.

Usage:
  python main.py create-admin --username root --email root@example.com
  python main.py inspect-token eyJhbGciOiJIUzI1NiIs...

Environment variables (see core/config.py):
  SECRET_KEY     Signing key for tokens (32+ chars). Required unless DEBUG=true.
  DATABASE_URL   SQLAlchemy URL of the user store.

Administrators cannot self-register through the API by default, so the first
one is created here. The account is created verified -- there is no OTP step.
"""

from __future__ import annotations

import argparse
import getpass
import sys
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.errors import TokenError
from auth.hashing import BcryptHasher
from auth.models import Role, User
from auth.store import UserStore
from auth.tokens import TokenCodec
from core.config import get_settings


def _read_password() -> Optional[str]:
    password = getpass.getpass("Password: ")
    if len(password) < 8:
        print("  [!] Password must be at least 8 characters.")
        return None
    if getpass.getpass("Repeat password: ") != password:
        print("  [!] Passwords do not match.")
        return None
    return password


def create_admin(username: str, email: str, store: Optional[UserStore] = None) -> int:
    """Create a verified ADMIN account. Returns a process exit code."""
    own_store = store is None
    store = store or UserStore(get_settings().database_url)
    try:
        if store.exists_by_username_or_email(username, email):
            print(f"  [!] A user with username '{username}' or email '{email}' already exists.")
            return 1
        password = _read_password()
        if password is None:
            return 1
        user = User(
            username=username,
            email=email,
            password_hash=BcryptHasher().hash(password),
            role=Role.ADMIN,
            verified=True,
        )
        try:
            store.save(user)
        except IntegrityError:
            print("  [!] That username or email was taken concurrently.")
            return 1
        print(f"  Created admin '{username}' (id={user.id}).")
        return 0
    finally:
        if own_store:
            store.close()


def inspect_token(token: str, codec: Optional[TokenCodec] = None) -> int:
    """Validate a token with the configured secret and print its claims."""
    if codec is None:
        settings = get_settings()
        codec = TokenCodec(
            settings.secret_key,
            issuer=settings.token_issuer,
            leeway_seconds=settings.token_leeway_seconds,
        )
    try:
        claims = codec.validate(token)
    except TokenError as exc:
        print(f"  [!] Rejected: {exc.code} -- {exc.message}")
        return 1
    print(f"  subject:    {claims.subject}")
    print(f"  role:       {claims.role.value}")
    print(f"  issuer:     {claims.issuer}")
    print(f"  issued at:  {claims.issued_at.isoformat()}")
    print(f"  expires at: {claims.expires_at.isoformat()}")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="tokengate",
        description="Operator commands for the TokenGate authentication service.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-admin --username root --email root@example.com
  python main.py inspect-token "$TOKEN"
        """,
    )
    commands = parser.add_subparsers(dest="command", metavar="COMMAND")

    admin = commands.add_parser("create-admin", help="Create a verified administrator account")
    admin.add_argument("--username", required=True, help="Login name for the new admin")
    admin.add_argument("--email", required=True, help="Email address for the new admin")

    inspect = commands.add_parser("inspect-token", help="Validate a token and print its claims")
    inspect.add_argument("token", help="The token string (without the 'Bearer ' prefix)")

    args = parser.parse_args(argv)

    if args.command == "create-admin":
        return create_admin(args.username, args.email)
    if args.command == "inspect-token":
        return inspect_token(args.token)

    parser.print_help()
    return 2


if __name__ == "__main__":
    sys.exit(main())
