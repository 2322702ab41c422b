#!/usr/bin/env python3
"""
AuthCore -- credential and session service.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8000
  python main.py purge-tokens
  python main.py unlock user@example.com

Environment variables (or .env):
  JWT_SECRET, JWT_REFRESH_SECRET   Required unless DEBUG=true. 32+ chars, distinct.
  DATABASE_URL                     SQLAlchemy URL (default sqlite:///authcore.db).
  GOOGLE_CLIENT_ID                 Enables Google sign-in.
  SMTP_HOST, SMTP_PORT, ...        Outbound mail. With DEBUG=true mail is logged instead.
"""

import argparse
from typing import Optional

from auth.service import AuthService
from auth.store import AuthStore
from core.config import get_settings


def _build_service() -> tuple[AuthService, AuthStore]:
    settings = get_settings()
    store = AuthStore(settings.database_url)
    return AuthService.from_settings(settings, store), store


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("asgi:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def _purge_tokens(args: argparse.Namespace) -> int:
    service, store = _build_service()
    try:
        removed = service.purge_expired_tokens()
    finally:
        store.close()
    print(f"  Purged {removed} expired token(s).")
    return 0


def _unlock(args: argparse.Namespace) -> int:
    service, store = _build_service()
    try:
        found = service.unlock(args.email)
    finally:
        store.close()
    if not found:
        print(f"  [!] No active account for '{args.email}'.")
        return 1
    print(f"  Lockout cleared for {args.email}.")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="authcore",
        description="Signup, login, email verification, password reset and Google sign-in.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py serve --reload
  python main.py purge-tokens
  python main.py unlock user@example.com
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    serve = sub.add_parser("serve", help="Run the HTTP API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Port (default: 8000)")
    serve.add_argument("--reload", action="store_true", help="Auto-reload on code changes (development)")
    serve.set_defaults(handler=_serve)

    purge = sub.add_parser("purge-tokens", help="Delete expired email verification and reset tokens")
    purge.set_defaults(handler=_purge_tokens)

    unlock = sub.add_parser("unlock", help="Clear a brute-force lockout for an account")
    unlock.add_argument("email", help="Email address of the locked account")
    unlock.set_defaults(handler=_unlock)

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 1
    return args.handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
