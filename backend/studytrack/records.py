"""Schedule and progress records plus the envelope every persisted blob is wrapped in."""

from __future__ import annotations

import re
import datetime as dt
from datetime import datetime, timezone
from typing import Any, Dict, Generic, List, Mapping, Optional, Tuple, TypeVar

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .errors import RecordValidationError

SUBJECTS: Tuple[str, ...] = ("arabic", "english", "math", "science", "history")
DAYS: Tuple[str, ...] = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")
EMPTY_SLOT = "-"
ONLINE_SUFFIX = " online"

_SLOT_PATTERN = re.compile(r"^([01]?\d|2[0-3]):[0-5]\d( online)?$")

SCHEDULE_KIND = "schedule"
PROGRESS_KIND = "progress"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def slot_key(subject: str, day: str) -> str:
    return f"{subject}-{day}"


def parse_slot_key(key: str) -> Tuple[str, str]:
    subject, sep, day = key.strip().lower().partition("-")
    if not sep or subject not in SUBJECTS or day not in DAYS:
        raise RecordValidationError(f"'{key}' is not a valid subject-day key.")
    return subject, day


def normalize_slot(value: Optional[str]) -> str:
    """Return the canonical slot descriptor or raise for anything unrenderable."""
    if value is None:
        return EMPTY_SLOT
    if not isinstance(value, str):
        raise RecordValidationError(f"Slot descriptors must be strings, got {type(value).__name__}.")
    trimmed = " ".join(value.split()).lower()
    if not trimmed or trimmed == EMPTY_SLOT:
        return EMPTY_SLOT
    if not _SLOT_PATTERN.match(trimmed):
        raise RecordValidationError(f"'{value}' is not a valid slot descriptor.")
    return trimmed


def all_slot_keys() -> List[str]:
    return [slot_key(subject, day) for subject in SUBJECTS for day in DAYS]


class ScheduleRecord(BaseModel):
    """Complete weekly grid: exactly one slot per subject and day."""

    slots: Dict[str, str] = Field(default_factory=dict)

    @field_validator("slots", mode="before")
    @classmethod
    def _materialize(cls, value: Any) -> Dict[str, str]:
        if value is None:
            value = {}
        if not isinstance(value, Mapping):
            raise ValueError("slots must be a mapping of subject-day keys to descriptors")
        complete = {key: EMPTY_SLOT for key in all_slot_keys()}
        seen: Dict[str, str] = {}
        for raw_key, raw_value in value.items():
            key = slot_key(*parse_slot_key(str(raw_key)))
            if key in seen:
                raise RecordValidationError(f"'{raw_key}' and '{seen[key]}' name the same slot.")
            seen[key] = str(raw_key)
            complete[key] = normalize_slot(raw_value)
        return complete

    @classmethod
    def empty(cls) -> "ScheduleRecord":
        return cls()

    @classmethod
    def from_slots(cls, slots: Mapping[str, Optional[str]]) -> "ScheduleRecord":
        try:
            return cls(slots=dict(slots))
        except ValidationError as exc:
            raise RecordValidationError(str(exc)) from exc

    def get(self, subject: str, day: str) -> str:
        return self.slots.get(slot_key(subject, day), EMPTY_SLOT)

    def with_changes(self, changes: Mapping[str, Optional[str]]) -> "ScheduleRecord":
        merged = dict(self.slots)
        merged.update(changes)
        return ScheduleRecord.from_slots(merged)

    def filled_slots(self) -> Dict[str, str]:
        return {key: value for key, value in self.slots.items() if value != EMPTY_SLOT}


class ExamScore(BaseModel):
    score: float = Field(ge=0, le=100)
    date: Optional[dt.date] = None


class SubjectProgress(BaseModel):
    chapters_completed: int = Field(default=0, ge=0)
    total_chapters: int = Field(default=0, ge=0)
    exam_scores: List[ExamScore] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_chapters(self) -> "SubjectProgress":
        if self.chapters_completed > self.total_chapters:
            raise ValueError("chapters_completed cannot exceed total_chapters")
        return self

    @property
    def completion_ratio(self) -> float:
        if self.total_chapters <= 0:
            return 0.0
        return self.chapters_completed / self.total_chapters


class ProgressRecord(BaseModel):
    """Per-subject chapter progress and exam history."""

    subjects: Dict[str, SubjectProgress] = Field(default_factory=dict)

    @field_validator("subjects", mode="before")
    @classmethod
    def _materialize(cls, value: Any) -> Dict[str, Any]:
        if value is None:
            value = {}
        if not isinstance(value, Mapping):
            raise ValueError("subjects must be a mapping keyed by subject")
        unknown = [key for key in value if key not in SUBJECTS]
        if unknown:
            raise ValueError(f"unknown subjects: {', '.join(sorted(map(str, unknown)))}")
        complete: Dict[str, Any] = {subject: SubjectProgress() for subject in SUBJECTS}
        complete.update(value)
        return complete

    @classmethod
    def parse(cls, payload: Mapping[str, Any]) -> "ProgressRecord":
        try:
            return cls.model_validate(payload)
        except ValidationError as exc:
            raise RecordValidationError(str(exc)) from exc

    def with_changes(self, changes: Mapping[str, Any]) -> "ProgressRecord":
        payload = self.model_dump(mode="json")
        for subject, entry in changes.items():
            if isinstance(entry, SubjectProgress):
                entry = entry.model_dump(mode="json")
            payload["subjects"][subject] = entry
        return ProgressRecord.parse(payload)


class StoredEnvelope(BaseModel):
    """Versioned, timestamped wrapper around a persisted payload."""

    kind: str = Field(min_length=1)
    schema_version: int = Field(ge=1)
    last_modified: datetime = Field(default_factory=_now)
    payload: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("last_modified")
    @classmethod
    def _ensure_aware(cls, value: datetime) -> datetime:
        # SQLite hands back naive datetimes.
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def same_content(self, other: "StoredEnvelope") -> bool:
        return (
            self.kind == other.kind
            and self.schema_version == other.schema_version
            and self.payload == other.payload
        )


RecordT = TypeVar("RecordT")


class RecordCodec(Generic[RecordT]):
    """Translate between a domain record and envelope payloads for one record kind."""

    kind: str

    def default(self) -> RecordT:
        raise NotImplementedError

    def to_payload(self, record: RecordT) -> Dict[str, Any]:
        raise NotImplementedError

    def from_payload(self, payload: Mapping[str, Any]) -> RecordT:
        raise NotImplementedError

    def validate_change(self, key: str, value: Any) -> Tuple[str, Any]:
        raise RecordValidationError(f"'{self.kind}' records do not accept field-level changes.")

    def apply_changes(self, record: RecordT, changes: Mapping[str, Any]) -> RecordT:
        raise RecordValidationError(f"'{self.kind}' records do not accept field-level changes.")


class ScheduleCodec(RecordCodec[ScheduleRecord]):
    kind = SCHEDULE_KIND

    def default(self) -> ScheduleRecord:
        return ScheduleRecord.empty()

    def to_payload(self, record: ScheduleRecord) -> Dict[str, Any]:
        return {"slots": dict(ScheduleRecord.from_slots(record.slots).slots)}

    def from_payload(self, payload: Mapping[str, Any]) -> ScheduleRecord:
        slots = payload.get("slots")
        if not isinstance(slots, Mapping):
            raise RecordValidationError("Schedule payload is missing its slot mapping.")
        return ScheduleRecord.from_slots(slots)

    def validate_change(self, key: str, value: Any) -> Tuple[str, Any]:
        subject, day = parse_slot_key(key)
        return slot_key(subject, day), normalize_slot(value)

    def apply_changes(self, record: ScheduleRecord, changes: Mapping[str, Any]) -> ScheduleRecord:
        return record.with_changes(changes)


class ProgressCodec(RecordCodec[ProgressRecord]):
    kind = PROGRESS_KIND

    def default(self) -> ProgressRecord:
        return ProgressRecord()

    def to_payload(self, record: ProgressRecord) -> Dict[str, Any]:
        return record.model_dump(mode="json")

    def from_payload(self, payload: Mapping[str, Any]) -> ProgressRecord:
        return ProgressRecord.parse(payload)

    def validate_change(self, key: str, value: Any) -> Tuple[str, Any]:
        subject = key.strip().lower()
        if subject not in SUBJECTS:
            raise RecordValidationError(f"'{key}' is not a tracked subject.")
        try:
            entry = value if isinstance(value, SubjectProgress) else SubjectProgress.model_validate(value)
        except ValidationError as exc:
            raise RecordValidationError(str(exc)) from exc
        return subject, entry

    def apply_changes(self, record: ProgressRecord, changes: Mapping[str, Any]) -> ProgressRecord:
        return record.with_changes(changes)


schedule_codec = ScheduleCodec()
progress_codec = ProgressCodec()

__all__ = [
    "DAYS",
    "EMPTY_SLOT",
    "ExamScore",
    "PROGRESS_KIND",
    "ProgressCodec",
    "ProgressRecord",
    "RecordCodec",
    "SCHEDULE_KIND",
    "SUBJECTS",
    "ScheduleCodec",
    "ScheduleRecord",
    "StoredEnvelope",
    "SubjectProgress",
    "all_slot_keys",
    "normalize_slot",
    "parse_slot_key",
    "progress_codec",
    "schedule_codec",
    "slot_key",
]
