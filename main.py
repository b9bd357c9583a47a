#!/usr/bin/env python3
"""
Identity service -- passwordless email-code login.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8080 --reload
  python main.py purge-codes
  python main.py purge-codes --database-url sqlite:///identity.db

Environment variables (see core/config.py for the full list):
  SECRET_KEY     Required unless DEBUG=true. At least 32 characters.
  DATABASE_URL   SQLAlchemy URL. Defaults to identity.db in the project root.
  SMTP_HOST      Mail server used to deliver confirmation codes.
"""

import argparse
import logging
from typing import Optional

from auth.errors import StorageError
from auth.store import IdentityStore
from core.config import get_settings

logger = logging.getLogger("identity.cli")


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("asgi:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def _purge_codes(args: argparse.Namespace) -> int:
    """Delete expired confirmation code rows once and report how many were removed."""
    db_url = args.database_url or get_settings().database_url
    store = IdentityStore(db_url)
    try:
        removed = store.purge_expired_codes()
    except StorageError as exc:
        print(f"  [!] Purge failed: {exc}")
        return 1
    finally:
        store.close()
    print(f"  Purged {removed} expired confirmation code(s).")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="identity-service",
        description="Passwordless email-code login issuing access and refresh tokens.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    serve.add_argument("--reload", action="store_true", help="Restart on code changes (development only)")
    serve.set_defaults(handler=_serve)

    purge = sub.add_parser("purge-codes", help="Delete expired confirmation codes and exit")
    purge.add_argument(
        "--database-url",
        metavar="URL",
        default=None,
        help="SQLAlchemy URL of the store (default: DATABASE_URL setting)",
    )
    purge.set_defaults(handler=_purge_codes)

    args = parser.parse_args(argv)
    return args.handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
