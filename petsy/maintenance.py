"""Maintenance tasks for a Petsy deployment.

Run ``petsy-maintenance purge-expired`` from a scheduler to sweep expired
activation tokens; the sweep is safe to run concurrently or repeatedly.
"""

from __future__ import annotations

import argparse
import logging
import os
from datetime import timedelta

from dotenv import load_dotenv

from .config import get_purge_threshold
from .db import ensure_schema, get_connection
from .hashstore import purge_expired_entries
from .store import create_store

logger = logging.getLogger(__name__)


def init_schema() -> None:
    with get_connection() as conn:
        ensure_schema(conn)
    logger.info("Database schema is up to date.")


def purge(threshold: timedelta | None = None, backend: str | None = None) -> int:
    store = create_store(backend)
    return purge_expired_entries(store, threshold or get_purge_threshold())


def healthcheck() -> None:
    with get_connection() as conn:
        ensure_schema(conn)
    print("OK")


def main(argv: list[str] | None = None) -> None:
    """CLI entrypoint for schema setup, token purges and health checks."""
    load_dotenv()
    log_level = (os.environ.get("LOG_LEVEL") or "INFO").upper()
    logging.basicConfig(
        level=log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    parser = argparse.ArgumentParser(prog="petsy-maintenance")
    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("init-schema", help="Create or update the database schema")
    purge_parser = commands.add_parser(
        "purge-expired", help="Delete hash store entries that expired a while ago"
    )
    purge_parser.add_argument(
        "--threshold-hours",
        type=float,
        default=None,
        help="Grace period after expiry before an entry is deleted (default: PETSY_PURGE_THRESHOLD_HOURS or 24)",
    )
    purge_parser.add_argument(
        "--store",
        choices=("memory", "postgres"),
        default=None,
        help="Store backend to sweep (default: PETSY_STORE or postgres)",
    )
    commands.add_parser("healthcheck", help="Check database connectivity")
    args = parser.parse_args(argv)

    if args.command == "init-schema":
        init_schema()
    elif args.command == "purge-expired":
        threshold = None
        if args.threshold_hours is not None:
            if args.threshold_hours <= 0:
                parser.error("--threshold-hours must be positive")
            threshold = timedelta(hours=args.threshold_hours)
        purge(threshold=threshold, backend=args.store)
    elif args.command == "healthcheck":
        healthcheck()


if __name__ == "__main__":
    main()
