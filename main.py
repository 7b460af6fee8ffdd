#!/usr/bin/env python3
"""
Canvas Auth -- account administration from the command line.

Usage:
  python main.py init-db
  python main.py deactivate user@example.com
  python main.py activate user@example.com
  python main.py logout user@example.com

Deactivation takes effect on the next request: the auth gate reloads the
account on every call, so unexpired access tokens stop working immediately.
`logout` clears the stored refresh token, ending the account's session
without deactivating it.

Reads the same environment (.env, DATABASE_URL, JWT_SECRET, ...) as the API.
"""

import argparse
import logging
import sys

from auth.errors import StoreUnavailableError
from auth.store import UserStore
from core.config import get_settings

logger = logging.getLogger("canvasauth.cli")


def _open_store() -> UserStore:
    settings = get_settings()
    return UserStore(
        settings.database_url,
        pool_size=1,
        pool_timeout=settings.db_pool_timeout,
        statement_timeout=settings.db_statement_timeout,
    )


def _set_account_fields(store: UserStore, email: str, **fields) -> int:
    account = store.find_by_email(email)
    if account is None:
        print(f"  [!] No account found for '{email}'.")
        return 1
    store.update(account.id, **fields)
    return 0


def cmd_init_db(store: UserStore, args: argparse.Namespace) -> int:
    store.create_schema()
    print("Schema ready.")
    return 0


def cmd_deactivate(store: UserStore, args: argparse.Namespace) -> int:
    code = _set_account_fields(store, args.email, is_active=False)
    if code == 0:
        print(f"Deactivated {args.email.lower()}.")
    return code


def cmd_activate(store: UserStore, args: argparse.Namespace) -> int:
    code = _set_account_fields(store, args.email, is_active=True)
    if code == 0:
        print(f"Activated {args.email.lower()}.")
    return code


def cmd_logout(store: UserStore, args: argparse.Namespace) -> int:
    code = _set_account_fields(store, args.email, refresh_token=None)
    if code == 0:
        print(f"Cleared session for {args.email.lower()}.")
    return code


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="canvas-auth",
        description="Administer Canvas Auth accounts.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py init-db
  python main.py deactivate a@x.com
  DATABASE_URL=postgresql://... python main.py activate a@x.com
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    sub.add_parser("init-db", help="Create the accounts table if it does not exist").set_defaults(func=cmd_init_db)

    for name, func, help_text in (
        ("deactivate", cmd_deactivate, "Block an account; existing access tokens stop working"),
        ("activate", cmd_activate, "Re-enable a deactivated account"),
        ("logout", cmd_logout, "Clear an account's stored refresh token"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("email", help="Account email (case-insensitive)")
        cmd.set_defaults(func=func)

    return parser


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s %(message)s")
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 1

    try:
        store = _open_store()
    except StoreUnavailableError as exc:
        print(f"  [!] Credential store unavailable: {exc}")
        return 1
    try:
        return args.func(store, args)
    except StoreUnavailableError as exc:
        print(f"  [!] Credential store unavailable: {exc}")
        return 1
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
