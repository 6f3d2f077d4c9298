#!/usr/bin/env python3
"""
OTPGate -- email signup with one-time-password verification.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 3000 --reload
  python main.py purge-sessions
  python main.py status j@x.com

Environment variables:
  SECRET_KEY     Required unless DEBUG=true. At least 32 characters.
  DATABASE_URL   SQLAlchemy URL of the account store (default: local SQLite file).
  SMTP_*         Mail relay used to deliver codes. See core/config.py.
"""

import argparse
import sys

from core.config import get_settings


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("asgi:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def _purge_sessions(args: argparse.Namespace) -> int:
    from auth.sessions import SessionManager
    from auth.store import AccountStore

    store = AccountStore(get_settings().database_url)
    try:
        removed = SessionManager(store).purge_expired()
    finally:
        store.close()
    print(f"  Removed {removed} expired session(s).")
    return 0


def _status(args: argparse.Namespace) -> int:
    """Print the verification state of one account. Never prints secrets."""
    from auth.service import normalize_identity
    from auth.store import AccountStore

    store = AccountStore(get_settings().database_url)
    try:
        account = store.find_by_identity(normalize_identity(args.email))
    finally:
        store.close()
    if account is None:
        print(f"  [!] No account for '{args.email}'.")
        return 1
    print(f"  {account.identity} ({account.display_name})")
    print(f"  created:  {account.created_at}")
    print(f"  verified: {'yes' if account.verified else 'no'}")
    if account.otp_expires_at is not None:
        print(f"  pending code expires: {account.otp_expires_at.isoformat()}")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="otpgate",
        description="Email signup with one-time-password verification and cookie sessions.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  DEBUG=true python main.py serve --reload
  python main.py purge-sessions
  python main.py status j@x.com
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    serve = sub.add_parser("serve", help="Run the HTTP API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=3000, help="Port (default: 3000)")
    serve.add_argument("--reload", action="store_true", help="Restart on code changes (development)")
    serve.set_defaults(func=_serve)

    purge = sub.add_parser("purge-sessions", help="Delete expired sessions and exit")
    purge.set_defaults(func=_purge_sessions)

    status = sub.add_parser("status", help="Show the verification state of an account")
    status.add_argument("email", help="Account email address")
    status.set_defaults(func=_status)

    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 0
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
