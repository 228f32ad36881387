#!/usr/bin/env python3
"""
LabLive auth -- operator command line.

Usage:
  python main.py create-admin admin@example.com 'S3cure-Passphrase!'
  python main.py create-admin admin@example.com 'S3cure-Passphrase!' --name "Lab Admin"

Reads the same environment as the API (DATABASE_URL, SECRET_KEY or DEBUG=true,
PASSWORD_* policy, BCRYPT_ROUNDS). The password must satisfy the password
policy. An existing account with that email is left unchanged.
"""

import argparse
import logging
import sys

from auth.errors import AuthError
from auth.service import AuthService
from auth.store import UserStore
from core.config import get_settings


def _create_admin(args: argparse.Namespace) -> int:
    settings = get_settings()
    store = UserStore(settings.database_url)
    try:
        service = AuthService.from_settings(settings, store)
        user, created = service.create_admin(args.name, args.email, args.password)
    except AuthError as e:
        print(f"  [!] {e.message}" + (f" ({e.detail})" if e.detail else ""))
        return 1
    finally:
        store.close()

    if created:
        print(f"  Admin account created: {user.email} (id {user.id})")
    else:
        print(f"  An account for {user.email} already exists (role: {user.role.value}); nothing changed.")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="lablive-auth",
        description="Operator tasks for the LabLive identity service.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-admin admin@example.com 'S3cure-Passphrase!'
  DATABASE_URL=sqlite:////var/lib/lablive/auth.db python main.py create-admin ops@example.com '...'
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    create = sub.add_parser("create-admin", help="Create an admin account if the email is not yet registered")
    create.add_argument("email", help="Email address of the new admin")
    create.add_argument("password", help="Initial password (must satisfy the password policy)")
    create.add_argument("--name", default="Administrator", help="Display name (default: Administrator)")
    create.set_defaults(func=_create_admin)

    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 0

    logging.basicConfig(level=logging.WARNING, format="%(levelname)-5s %(name)s %(message)s")
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
