"""Import a device's local envelope store into the remote database.

Used when a device has been running offline for a long time or when the
remote database is rebuilt: every envelope in the JSON store is migrated to
the current schema and written unless the database already holds a newer copy.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from pydantic import ValidationError

from studytrack.db.session import create_schema, session_scope
from studytrack.errors import RecordValidationError, StaleWriteError, UnknownVersionError
from studytrack.migrations import migrations
from studytrack.records import StoredEnvelope
from studytrack.repositories.envelopes import envelopes

logger = logging.getLogger("studytrack.backfill")


def backfill(path: Path) -> dict[str, int]:
    counts = {"imported": 0, "stale": 0, "invalid": 0}
    if not path.exists():
        logger.info("No local store found at %s", path)
        return counts
    with path.open(encoding="utf-8") as handle:
        payload = json.load(handle)
    if not isinstance(payload, dict):
        logger.warning("Local store at %s is not a mapping; skipping", path)
        return counts

    with session_scope() as session:
        for key, entry in payload.items():
            try:
                envelope = migrations.migrate(StoredEnvelope.model_validate(entry))
            except (ValidationError, RecordValidationError, UnknownVersionError) as exc:
                logger.warning("Skipping unreadable envelope %s: %s", key, exc)
                counts["invalid"] += 1
                continue
            try:
                envelopes.put(session, key, envelope)
            except StaleWriteError:
                logger.info("Database already holds a newer %s; skipping", key)
                counts["stale"] += 1
                continue
            counts["imported"] += 1
    logger.info(
        "Backfill finished: %d imported, %d stale, %d invalid",
        counts["imported"],
        counts["stale"],
        counts["invalid"],
    )
    return counts


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Backfill a local envelope store into the database.")
    parser.add_argument("path", type=Path, help="Path to the device's local store JSON file.")
    parser.add_argument(
        "--create-schema",
        action="store_true",
        help="Create tables directly instead of relying on Alembic (development databases).",
    )
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    args = parse_args(argv)
    if args.create_schema:
        create_schema()
    try:
        backfill(args.path)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Backfill failed: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
