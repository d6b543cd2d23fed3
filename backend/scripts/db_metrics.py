"""Print envelope store pool metrics and per-kind row counts as one JSON line."""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Dict

from sqlalchemy import func, select

from studytrack.db.models import StoredEnvelopeModel
from studytrack.db.monitoring import get_pool_snapshot
from studytrack.db.session import get_engine, session_scope

LOGGER = logging.getLogger("studytrack.db_metrics")


def collect_envelope_counts() -> Dict[str, int]:
    stmt = select(StoredEnvelopeModel.kind, func.count()).group_by(StoredEnvelopeModel.kind)
    with session_scope(commit=False) as session:
        return {kind: int(count) for kind, count in session.execute(stmt)}


def main() -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    try:
        counts = collect_envelope_counts()
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "pool": get_pool_snapshot(get_engine()),
            "envelopes": counts,
        }
        print(json.dumps(payload))
        return 0
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("Failed to collect envelope store metrics: %s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
