#!/usr/bin/env python3
"""
VerifyHub -- Email-verified accounts with bearer-token login and role-based access.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8080
  python main.py serve --reload
  python main.py create-admin --email admin@example.com --first-name Ada --last-name Admin

Environment variables (see core/config.py for the full list):
  SECRET_KEY     JWT signing key, 32+ characters. Required unless DEBUG=true.
  DATABASE_URL   SQLAlchemy URL. Default: sqlite:///./verifyhub.db
  SMTP_HOST      Outgoing mail relay. Required unless DEBUG=true.
  DEBUG          true for local development (console mail, generated secret).
"""

import argparse
import getpass
import sys
from typing import Optional

from auth.accounts import AccountService
from auth.mailer import build_mailer
from auth.models import Account
from auth.store import AccountStore
from auth.tokens import PASSWORD_MAX_BYTES, TokenIssuer, password_fits
from core.config import Settings, get_settings
from core.errors import AppError

MIN_PASSWORD_LENGTH = 6
MAX_PASSWORD_LENGTH = 100


def create_admin(email: str, password: str, first_name: str, last_name: str, settings: Settings) -> Account:
    """Provision a verified ADMIN account directly in the store.

    This is how the first administrator comes into being; after that, admins
    promote other accounts through PATCH /api/v1/users/{id}.
    """
    store = AccountStore(settings.database_url)
    try:
        service = AccountService(
            store=store,
            mailer=build_mailer(settings),
            tokens=TokenIssuer(settings.secret_key, settings.token_expire_seconds),
            otp_lifetime_seconds=settings.otp_expire_seconds,
            bcrypt_rounds=settings.bcrypt_rounds,
        )
        return service.provision_admin(email, password, first_name, last_name)
    finally:
        store.close()


def _read_password() -> Optional[str]:
    """Prompt twice for a password. Returns None if the entries differ or the length is out of bounds."""
    password = getpass.getpass("  Password: ")
    confirm = getpass.getpass("  Confirm password: ")
    if password != confirm:
        print("  [!] Passwords do not match.")
        return None
    if not MIN_PASSWORD_LENGTH <= len(password) <= MAX_PASSWORD_LENGTH:
        print(f"  [!] Password must be {MIN_PASSWORD_LENGTH}-{MAX_PASSWORD_LENGTH} characters.")
        return None
    if not password_fits(password):
        print(f"  [!] Password must not exceed {PASSWORD_MAX_BYTES} bytes.")
        return None
    return password


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("asgi:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def _create_admin(args: argparse.Namespace) -> int:
    password = _read_password()
    if password is None:
        return 1
    try:
        account = create_admin(args.email, password, args.first_name, args.last_name, get_settings())
    except AppError as exc:
        print(f"  [!] {exc.message}")
        return 1
    print(f"  Admin account created: {account.email} (id {account.id})")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="verifyhub",
        description="Email-verified accounts with bearer-token login and role-based access.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py serve --reload
  DEBUG=true python main.py create-admin --email admin@example.com --first-name Ada --last-name Admin
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    serve = sub.add_parser("serve", help="Run the HTTP API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    serve.add_argument("--reload", action="store_true", help="Restart on code changes (development only)")
    serve.set_defaults(handler=_serve)

    admin = sub.add_parser("create-admin", help="Create a verified ADMIN account; prompts for the password")
    admin.add_argument("--email", required=True, help="Login email for the new admin")
    admin.add_argument("--first-name", required=True, help="Given name (2-50 characters)")
    admin.add_argument("--last-name", required=True, help="Family name (2-50 characters)")
    admin.set_defaults(handler=_create_admin)

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 0
    return args.handler(args)


if __name__ == "__main__":
    sys.exit(main())
