"""CLI entrypoint for the automation engine."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from pydantic import ValidationError

from matrix_automation import __version__
from matrix_automation.engine.config import EngineSettings
from matrix_automation.engine.engine import Engine, StartupError
from matrix_automation.engine.logging import configure_logging
from matrix_automation.engine.storage.database import Storage, StorageError
from matrix_automation.engine.storage.migrations import MigrationError

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="matrix-automation",
        description="Trigger-driven workflow engine with Matrix bots",
    )
    parser.add_argument(
        "--version", action="version", version=f"matrix-automation {__version__}"
    )
    parser.add_argument(
        "--env-file",
        default=".env",
        help="Path to the .env file to load settings from (default: .env)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser(
        "run",
        help="Start the engine: load workflows, wake up bots, serve webhooks and run polls",
    )
    subparsers.add_parser("migrate", help="Apply pending database migrations and exit")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = EngineSettings(_env_file=Path(args.env_file))
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    configure_logging(settings.log_level, debug=settings.debug)

    if args.command == "migrate":
        assert settings.database_path is not None
        try:
            storage = Storage.connect(settings.database_path)
        except (StorageError, MigrationError):
            logger.exception("Database migration failed")
            return 1
        storage.close()
        print(f"Database is up to date: {settings.database_path}")
        return 0

    engine = Engine(settings)
    try:
        engine.start_up()
    except StartupError:
        logger.exception("Engine failed to start")
        engine.shut_down()
        return 1

    try:
        engine.run()
    except KeyboardInterrupt:
        logger.info("Interrupted; shutting down")
        engine.shut_down()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
