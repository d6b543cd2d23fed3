"""Connection pool counters for the envelope store database.

Pool events are counted per engine and published as throttled
``db_pool_status`` telemetry; ``/healthz/database`` reads the same counters.
"""

from __future__ import annotations

import os
import time
from dataclasses import asdict, dataclass, field
from typing import Dict

from sqlalchemy import event
from sqlalchemy.engine import Engine

from ..telemetry import emit_event

_TELEMETRY_INTERVAL = float(os.getenv("STUDYTRACK_DB_TELEMETRY_INTERVAL", "60"))


@dataclass
class PoolCounters:
    connects: int = 0
    checkouts: int = 0
    checkins: int = 0
    invalidations: int = 0
    last_published: float = field(default=0.0, repr=False)

    def as_payload(self) -> Dict[str, int]:
        payload = asdict(self)
        payload.pop("last_published")
        return payload


_COUNTERS: Dict[int, PoolCounters] = {}


def _pool_status(engine: Engine) -> str:
    try:
        return engine.pool.status()  # type: ignore[no-untyped-call]
    except Exception as exc:  # pragma: no cover - pools without status()
        return f"unavailable: {exc}"


def _publish(engine: Engine, counters: PoolCounters, trigger: str) -> None:
    now = time.monotonic()
    if _TELEMETRY_INTERVAL > 0 and counters.last_published and now - counters.last_published < _TELEMETRY_INTERVAL:
        return
    counters.last_published = now
    emit_event("db_pool_status", status=_pool_status(engine), trigger=trigger, **counters.as_payload())


def instrument_engine(engine: Engine) -> None:
    """Attach pool listeners once per engine."""
    if id(engine) in _COUNTERS:
        return
    counters = _COUNTERS[id(engine)] = PoolCounters()

    def on_connect(dbapi_connection, connection_record) -> None:  # type: ignore[no-untyped-def]
        counters.connects += 1
        _publish(engine, counters, "connect")

    def on_checkout(dbapi_connection, connection_record, connection_proxy) -> None:  # type: ignore[no-untyped-def]
        counters.checkouts += 1
        _publish(engine, counters, "checkout")

    def on_checkin(dbapi_connection, connection_record) -> None:  # type: ignore[no-untyped-def]
        counters.checkins += 1

    def on_invalidate(dbapi_connection, connection_record, exception) -> None:  # type: ignore[no-untyped-def]
        counters.invalidations += 1
        _publish(engine, counters, "invalidate")

    event.listen(engine, "connect", on_connect)
    event.listen(engine, "checkout", on_checkout)
    event.listen(engine, "checkin", on_checkin)
    event.listen(engine, "invalidate", on_invalidate)


def release_engine(engine: Engine) -> None:
    """Forget counters for a disposed engine so a reused ``id`` starts clean."""
    _COUNTERS.pop(id(engine), None)


def get_pool_snapshot(engine: Engine) -> Dict[str, object]:
    counters = _COUNTERS.get(id(engine), PoolCounters())
    return {"status": _pool_status(engine), **counters.as_payload()}


__all__ = [
    "PoolCounters",
    "get_pool_snapshot",
    "instrument_engine",
    "release_engine",
]
