#!/usr/bin/env python3
"""
ClinicAuth -- credential verification and session token service.

Usage:
  python main.py seed                 create the default ADMIN/DOCTOR/STAFF accounts
  python main.py unlock EMAIL         clear the lockout counters of an account
  python main.py serve [--host H] [--port P] [--reload]

Environment variables (see core/config.py for the full list):
  JWT_SECRET     Signing key, at least 32 characters. Required unless DEBUG=true.
  DATABASE_URL   SQLAlchemy URL. Default: sqlite:///clinicauth.db
"""

import argparse
import logging
import sys

from auth.seed import DEFAULT_USERS, seed_default_users
from auth.store import UserStore
from core.config import get_settings


def _cmd_seed(args: argparse.Namespace) -> int:
    settings = get_settings()
    store = UserStore(settings.database_url)
    try:
        created = seed_default_users(store, rounds=settings.bcrypt_rounds)
    finally:
        store.close()
    if not created:
        print("  All default accounts already exist.")
        return 0
    print("  Created:")
    for email, password, role in DEFAULT_USERS:
        if email in created:
            print(f"    {role.value:<7} {email} / {password}")
    return 0


def _cmd_unlock(args: argparse.Namespace) -> int:
    settings = get_settings()
    store = UserStore(settings.database_url)
    try:
        account = store.get_by_email(args.email)
        if account is None:
            print(f"  [!] No account with email '{args.email}'.")
            return 1
        store.unlock(account.id)
    finally:
        store.close()
    print(f"  Unlocked {args.email}.")
    return 0


def _cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("asgi:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="clinicauth", description="ClinicAuth administration and server.")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("seed", help="Create the default clinic accounts.").set_defaults(func=_cmd_seed)

    unlock = sub.add_parser("unlock", help="Clear the lockout state of an account.")
    unlock.add_argument("email")
    unlock.set_defaults(func=_cmd_unlock)

    serve = sub.add_parser("serve", help="Run the API with uvicorn.")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--reload", action="store_true")
    serve.set_defaults(func=_cmd_serve)

    args = parser.parse_args(argv)
    logging.basicConfig(level=get_settings().log_level.upper(), format="%(levelname)-5s %(name)s %(message)s")
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
