#!/usr/bin/env python3
"""
User authentication -- maintenance command line.

Usage:
  python main.py cleanup
  python main.py cleanup --verified-older-than 30
  python main.py check-config

Configuration comes from the same environment variables / .env file as the
API (see core/config.py). DATABASE_URL selects the database to clean.
"""

import argparse
import sys
from datetime import timedelta
from typing import Optional

from core.config import get_settings
from verification.errors import ConfigurationError
from verification.events import EventDispatcher
from verification.providers import build_provider
from verification.store import VerificationStore


def cleanup(store: VerificationStore, verified_older_than: int) -> tuple[int, int]:
    """Delete expired records and records verified more than N minutes ago.

    Returns (expired_removed, verified_removed).
    """
    expired = store.delete_expired()
    verified = store.delete_verified_older_than(timedelta(minutes=verified_older_than))
    return expired, verified


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="user-auth",
        description="Maintenance tasks for the user authentication service.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py cleanup
  python main.py cleanup --verified-older-than 30
  DATABASE_URL=sqlite:///./prod.db python main.py cleanup
  VERIFICATION_PROVIDER=smartpings VERIFICATION_SELF_MANAGED=false python main.py check-config
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    p_cleanup = sub.add_parser("cleanup", help="Delete expired and stale verified verification records")
    p_cleanup.add_argument(
        "--verified-older-than",
        type=int,
        default=60,
        metavar="MINUTES",
        help="Also delete records verified more than MINUTES ago (default: 60)",
    )
    p_cleanup.add_argument(
        "--database-url",
        metavar="URL",
        help="Override DATABASE_URL for this run",
    )

    sub.add_parser("check-config", help="Validate settings and report the active verification provider")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    try:
        settings = get_settings()
    except ValueError as e:
        print(f"  [!] Invalid configuration: {e}", file=sys.stderr)
        return 2

    if args.command == "cleanup":
        if args.verified_older_than < 1:
            print("  [!] --verified-older-than must be at least 1.", file=sys.stderr)
            return 2
        store = VerificationStore(db_url=args.database_url or settings.database_url)
        try:
            expired, verified = cleanup(store, args.verified_older_than)
        finally:
            store.close()
        print(f"Removed {expired} expired and {verified} stale verified record(s).")
        return 0

    # check-config
    config = settings.verification_config()
    store = VerificationStore(db_url=settings.database_url)
    try:
        provider = build_provider(config, store, EventDispatcher())
    except ConfigurationError as e:
        print(f"  [!] {e}", file=sys.stderr)
        return 2
    finally:
        store.close()
    print(f"Verification provider: {provider.name}")
    print(f"Code length: {config.code_length}, expiry: {config.code_expiry_minutes} min")
    print(f"Send limit: {config.rate_limit_attempts} per {config.rate_limit_minutes} min")
    print(
        f"Registration requires: email={config.require_email_verification}, "
        f"phone={config.require_phone_verification}"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
