"""
Command line entry point.

    python -m dbaccess check
    python -m dbaccess stats
    python -m dbaccess migrate [--down] [--migration-files DIR]
    python -m dbaccess version [--migration-files DIR]

Connection settings come from DB_* environment variables (or .env).
"""

import argparse
import dataclasses
import json
import logging
import sys

import sentry_sdk
from pydantic import ValidationError

from dbaccess.client import Client
from dbaccess.core.config import get_settings

logger = logging.getLogger("dbaccess")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dbaccess",
        description="Check connectivity, inspect the pool and run migrations.",
    )
    parser.add_argument(
        "--migration-files",
        default=None,
        help="Directory where the migration files are located (overrides DB_MIGRATION_DIR)",
    )
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("check", help="Open a connection and ping the server")
    sub.add_parser("stats", help="Print connection pool statistics as JSON")
    migrate = sub.add_parser("migrate", help="Apply all pending migrations")
    migrate.add_argument(
        "--down",
        action="store_true",
        help="Revert all migrations instead",
    )
    sub.add_parser("version", help="Print the current migration revision")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        settings = get_settings()
    except ValidationError as exc:
        parser.error(f"invalid environment settings: {exc}")

    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if settings.SENTRY_DSN:
        sentry_sdk.init(dsn=str(settings.SENTRY_DSN), enable_tracing=True)

    config = settings.db_config()
    if args.migration_files:
        config = config.model_copy(update={"migration_dir": args.migration_files})
    client = Client(config)

    try:
        if args.command == "check":
            ok, err = client.conn_check()
            if not ok:
                logger.error("Connection check failed: %s", err)
                return 1
            print("ok")
        elif args.command == "stats":
            stats = client.get_stats()
            print(json.dumps(dataclasses.asdict(stats)))
        elif args.command == "migrate":
            if args.down:
                client.clean_up()
            else:
                client.migrate()
        elif args.command == "version":
            print(client.migration_version() or "none")
    except Exception:
        logger.exception("Command %s failed", args.command)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
