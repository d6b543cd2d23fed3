"""Schema migrations applied to stored envelopes on load.

Each record kind has a current schema version and a chain of pairwise steps
``(kind, from_version) -> step`` that each lift a payload exactly one version.
Steps are pure: they receive a copy of the previous payload and return a new
one, so a failed chain never leaves a half-migrated envelope behind.
"""

from __future__ import annotations

import copy
import logging
import re
from datetime import date
from typing import Any, Callable, Dict, Optional, Tuple

from .errors import RecordValidationError, UnknownVersionError
from .records import EMPTY_SLOT, ONLINE_SUFFIX, PROGRESS_KIND, SCHEDULE_KIND, StoredEnvelope

logger = logging.getLogger(__name__)

TRIGGER_KIND = "trigger_state"

Payload = Dict[str, Any]
MigrationStep = Callable[[Payload], Payload]

_LONG_DAY_NAMES = {
    "monday": "mon",
    "tuesday": "tue",
    "wednesday": "wed",
    "thursday": "thu",
    "friday": "fri",
    "saturday": "sat",
    "sunday": "sun",
}
_LEGACY_ONLINE = re.compile(r"^(?P<time>\d{1,2}:\d{2})\s*(\*|\(online\)|online|💻)$", re.IGNORECASE)


class MigrationEngine:
    """Registry of per-kind migration chains."""

    def __init__(self) -> None:
        self._current: Dict[str, int] = {}
        self._steps: Dict[Tuple[str, int], MigrationStep] = {}

    def register_kind(self, kind: str, current_version: int) -> None:
        if current_version < 1:
            raise ValueError("Schema versions start at 1.")
        self._current[kind] = current_version

    def register(self, kind: str, from_version: int) -> Callable[[MigrationStep], MigrationStep]:
        """Decorator registering the step that lifts ``kind`` from ``from_version``."""

        def decorator(step: MigrationStep) -> MigrationStep:
            key = (kind, from_version)
            if key in self._steps:
                raise ValueError(f"Migration for {kind} v{from_version} is already registered.")
            self._steps[key] = step
            return step

        return decorator

    def current_version(self, kind: str) -> int:
        try:
            return self._current[kind]
        except KeyError:
            raise UnknownVersionError(kind, 0) from None

    def needs_migration(self, envelope: StoredEnvelope) -> bool:
        return envelope.schema_version != self.current_version(envelope.kind)

    def migrate(self, envelope: StoredEnvelope) -> StoredEnvelope:
        target = self.current_version(envelope.kind)
        version = envelope.schema_version
        if version == target:
            return envelope
        if version > target:
            raise UnknownVersionError(envelope.kind, version)

        payload: Payload = copy.deepcopy(envelope.payload)
        while version < target:
            step: Optional[MigrationStep] = self._steps.get((envelope.kind, version))
            if step is None:
                raise UnknownVersionError(envelope.kind, version)
            try:
                payload = step(copy.deepcopy(payload))
            except (AttributeError, KeyError, TypeError, ValueError) as exc:
                raise RecordValidationError(
                    f"Cannot migrate {envelope.kind} payload from v{version}: {exc}"
                ) from exc
            version += 1

        logger.info(
            "Migrated %s envelope from v%d to v%d",
            envelope.kind,
            envelope.schema_version,
            target,
        )
        return envelope.model_copy(update={"schema_version": target, "payload": payload})


migrations = MigrationEngine()
migrations.register_kind(SCHEDULE_KIND, 3)
migrations.register_kind(PROGRESS_KIND, 2)
migrations.register_kind(TRIGGER_KIND, 2)


@migrations.register(SCHEDULE_KIND, 1)
def _schedule_wrap_slots(payload: Payload) -> Payload:
    # v1 stored the slot map at the top level with blanks for empty cells.
    slots = {
        str(key): (EMPTY_SLOT if value in (None, "") else value)
        for key, value in payload.items()
    }
    return {"slots": slots}


@migrations.register(SCHEDULE_KIND, 2)
def _schedule_short_days(payload: Payload) -> Payload:
    slots: Dict[str, Any] = {}
    for key, value in payload["slots"].items():
        subject, _, day = str(key).partition("-")
        day = _LONG_DAY_NAMES.get(day.lower(), day.lower())
        if isinstance(value, str):
            match = _LEGACY_ONLINE.match(value.strip())
            if match:
                value = match.group("time") + ONLINE_SUFFIX
        normalized = f"{subject.lower()}-{day}"
        if normalized in slots:
            raise ValueError(f"duplicate slot key {normalized}")
        slots[normalized] = value
    return {"slots": slots}


@migrations.register(PROGRESS_KIND, 1)
def _progress_structured_scores(payload: Payload) -> Payload:
    subjects: Dict[str, Any] = {}
    for subject, entry in payload.get("subjects", {}).items():
        entry = dict(entry)
        entry["exam_scores"] = [
            score if isinstance(score, dict) else {"score": float(score), "date": None}
            for score in entry.get("exam_scores", [])
        ]
        subjects[subject] = entry
    return {"subjects": subjects}


@migrations.register(TRIGGER_KIND, 1)
def _trigger_week_identifier(payload: Payload) -> Payload:
    fired_on = payload.get("last_fired_date")
    week: Optional[str] = None
    if fired_on:
        iso = date.fromisoformat(str(fired_on)).isocalendar()
        week = f"{iso[0]:04d}-W{iso[1]:02d}"
    return {
        "last_fired_week": week,
        "last_fired_at": payload.get("last_fired_at"),
    }


__all__ = ["MigrationEngine", "TRIGGER_KIND", "migrations"]
