"""Run one weekly report check for the configured student.

Meant for cron or a launchd job on the study device: loads the trigger
state, fires the report if the window is open and this week has not been
reported yet, then waits for pending syncs before exiting.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import datetime
from typing import Optional, Sequence

from studytrack.config import get_settings
from studytrack.logging_config import configure_logging
from studytrack.tracker import StudyTracker
from studytrack.trigger import TriggerDecision

LOGGER = logging.getLogger("studytrack.weekly_check")


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Check and fire the weekly progress report.")
    parser.add_argument(
        "--at",
        type=datetime.fromisoformat,
        default=None,
        help="Evaluate the window at this ISO timestamp instead of now.",
    )
    parser.add_argument("--log-level", default=None)
    return parser.parse_args(argv)


async def run_check(tracker: StudyTracker, at: Optional[datetime] = None) -> bool:
    try:
        outcome = await tracker.on_activation(at)
    finally:
        await tracker.aclose()
    LOGGER.info("Weekly check for %s: %s", outcome.week, outcome.decision.value)
    if outcome.decision is TriggerDecision.NOT_PERSISTED:
        return False
    if outcome.fired and outcome.delivery is not None and not outcome.delivery.success:
        LOGGER.error("Report delivery failed (%s): %s", outcome.delivery.error_kind, outcome.delivery.detail)
        return False
    return True


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level)
    try:
        tracker = StudyTracker(get_settings())
        ok = asyncio.run(run_check(tracker, args.at))
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("Weekly check failed: %s", exc)
        return 1
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
