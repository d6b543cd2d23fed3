"""Structured sync and report events fanned out to in-process listeners.

Listeners back the "sync pending" indicator in the UI; every event is also
written as one JSON line on the ``studytrack.telemetry`` logger.
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from threading import RLock
from typing import Any, Callable, Dict, Iterator, List, Optional

logger = logging.getLogger("studytrack.telemetry")

Listener = Callable[["TelemetryEvent"], None]


@dataclass(frozen=True)
class TelemetryEvent:
    name: str
    payload: Dict[str, Any]

    def get(self, field: str, default: Any = None) -> Any:
        return self.payload.get(field, default)


_listeners: List[Listener] = []
_lock = RLock()


def register_listener(listener: Listener) -> None:
    with _lock:
        _listeners.append(listener)


def unregister_listener(listener: Listener) -> None:
    with _lock:
        try:
            _listeners.remove(listener)
        except ValueError:
            pass


def clear_listeners() -> None:
    with _lock:
        _listeners.clear()


@contextmanager
def capture_events(*names: str) -> Iterator[List[TelemetryEvent]]:
    """Collect events emitted inside the block, optionally filtered by name."""
    captured: List[TelemetryEvent] = []
    wanted: Optional[set[str]] = set(names) or None

    def _collect(event: TelemetryEvent) -> None:
        if wanted is None or event.name in wanted:
            captured.append(event)

    register_listener(_collect)
    try:
        yield captured
    finally:
        unregister_listener(_collect)


def emit_event(name: str, **fields: Any) -> None:
    payload = {key: _plain(value) for key, value in fields.items()}
    event = TelemetryEvent(name=name, payload=payload)

    with _lock:
        listeners = list(_listeners)

    for listener in listeners:
        try:
            listener(event)
        except Exception:  # noqa: BLE001
            logger.exception("Telemetry listener failed for %s", name)

    logger.info("TELEMETRY %s", json.dumps({"event": name, **payload}, default=str))


def _plain(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


__all__ = [
    "TelemetryEvent",
    "capture_events",
    "clear_listeners",
    "emit_event",
    "register_listener",
    "unregister_listener",
]
