"""Upgrade the envelope store schema before the store service starts.

Waits for the database with a bounded readiness probe, applies Alembic
revisions, then verifies that the ``stored_envelopes`` table is present.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Optional, Sequence

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from tenacity import RetryError, Retrying, retry_if_exception_type, stop_after_delay, wait_fixed

LOGGER = logging.getLogger("studytrack.migrations")
BACKEND_ROOT = Path(__file__).resolve().parent.parent
REQUIRED_TABLES = ("stored_envelopes",)


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Apply envelope store migrations.")
    parser.add_argument("--revision", default=os.getenv("STUDYTRACK_DB_MIGRATION_REVISION", "head"))
    parser.add_argument(
        "--timeout",
        type=float,
        default=float(os.getenv("STUDYTRACK_DB_MIGRATION_TIMEOUT", "60")),
        help="Seconds to wait for the database to accept connections.",
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=float(os.getenv("STUDYTRACK_DB_MIGRATION_POLL_INTERVAL", "3")),
    )
    parser.add_argument("--config", default=str(BACKEND_ROOT / "alembic.ini"))
    return parser.parse_args(argv)


def load_config(config_path: str) -> Config:
    config = Config(config_path)
    config.set_main_option("script_location", str(BACKEND_ROOT / "alembic"))
    return config


def resolve_database_url(config: Config) -> str:
    configured = config.get_main_option("sqlalchemy.url")
    if configured and "%(" not in configured:
        return configured
    env_url = os.getenv("STUDYTRACK_DATABASE_URL")
    if not env_url:
        raise RuntimeError("STUDYTRACK_DATABASE_URL must be set before running migrations.")
    config.set_main_option("sqlalchemy.url", env_url)
    return env_url


def wait_for_database(database_url: str, *, timeout: float, poll_interval: float) -> None:
    """Retry ``SELECT 1`` on connectivity errors until ``timeout`` elapses."""
    engine = create_engine(database_url, future=True, pool_pre_ping=True)
    try:
        for attempt in Retrying(
            stop=stop_after_delay(timeout),
            wait=wait_fixed(poll_interval),
            retry=retry_if_exception_type(OperationalError),
            before_sleep=lambda state: LOGGER.warning(
                "Database not ready (attempt %d): %s", state.attempt_number, state.outcome.exception()
            ),
        ):
            with attempt:
                with engine.connect() as connection:
                    connection.execute(text("SELECT 1"))
    except RetryError as exc:
        raise RuntimeError("Database did not become ready in time.") from exc.last_attempt.exception()
    except SQLAlchemyError as exc:
        raise RuntimeError(f"Database readiness probe failed: {exc}") from exc
    finally:
        engine.dispose()
    LOGGER.info("Database is reachable.")


def verify_schema(database_url: str, tables: Sequence[str] = REQUIRED_TABLES) -> None:
    engine = create_engine(database_url, future=True)
    try:
        existing = set(inspect(engine).get_table_names())
    finally:
        engine.dispose()
    missing = [table for table in tables if table not in existing]
    if missing:
        raise RuntimeError(f"Migrations finished but tables are missing: {', '.join(missing)}")


def run_migrations(
    revision: str,
    *,
    timeout: float,
    poll_interval: float,
    config: Optional[Config] = None,
) -> None:
    config = config or load_config(str(BACKEND_ROOT / "alembic.ini"))
    database_url = resolve_database_url(config)
    LOGGER.info("Upgrading envelope store to %s", revision)
    wait_for_database(database_url, timeout=timeout, poll_interval=poll_interval)
    command.upgrade(config, revision)
    verify_schema(database_url)
    LOGGER.info("Envelope store schema is current.")


def main(argv: Optional[Sequence[str]] = None) -> int:
    logging.basicConfig(
        level=os.getenv("STUDYTRACK_DB_MIGRATION_LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    args = parse_args(argv)
    try:
        run_migrations(
            args.revision,
            timeout=args.timeout,
            poll_interval=args.poll_interval,
            config=load_config(args.config),
        )
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("Migration run failed: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
