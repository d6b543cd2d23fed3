from __future__ import annotations

from datetime import datetime, timezone

import pytest

from studytrack.errors import RecordValidationError
from studytrack.records import (
    EMPTY_SLOT,
    ProgressRecord,
    ScheduleRecord,
    StoredEnvelope,
    SubjectProgress,
    all_slot_keys,
    normalize_slot,
    parse_slot_key,
    progress_codec,
    schedule_codec,
)


def test_schedule_materializes_every_subject_day() -> None:
    record = ScheduleRecord.from_slots({"arabic-mon": "9:00", "english-tue": "-"})

    assert len(record.slots) == 35
    assert set(record.slots) == set(all_slot_keys())
    assert record.get("arabic", "mon") == "9:00"
    assert record.get("english", "tue") == EMPTY_SLOT
    assert record.filled_slots() == {"arabic-mon": "9:00"}


def test_schedule_rejects_unknown_keys_and_descriptors() -> None:
    with pytest.raises(RecordValidationError):
        ScheduleRecord.from_slots({"music-mon": "9:00"})
    with pytest.raises(RecordValidationError):
        ScheduleRecord.from_slots({"math-mon": "25:00"})
    with pytest.raises(RecordValidationError):
        ScheduleRecord.from_slots({"math-mon": "after lunch"})


def test_slot_normalization() -> None:
    assert normalize_slot(None) == EMPTY_SLOT
    assert normalize_slot("   ") == EMPTY_SLOT
    assert normalize_slot(" 9:00   Online ") == "9:00 online"
    assert normalize_slot("17:30") == "17:30"
    assert parse_slot_key("Math-FRI") == ("math", "fri")
    with pytest.raises(RecordValidationError):
        parse_slot_key("math")


def test_schedule_with_changes_returns_new_record() -> None:
    original = ScheduleRecord.empty()
    updated = original.with_changes({"science-wed": "18:00 online"})

    assert original.get("science", "wed") == EMPTY_SLOT
    assert updated.get("science", "wed") == "18:00 online"


def test_schedule_codec_validate_change() -> None:
    assert schedule_codec.validate_change("History-Sun", "8:15") == ("history-sun", "8:15")
    with pytest.raises(RecordValidationError):
        schedule_codec.validate_change("history-someday", "8:15")


def test_progress_fills_missing_subjects_and_rejects_unknown() -> None:
    record = ProgressRecord.parse({"subjects": {"math": {"chapters_completed": 2, "total_chapters": 10}}})

    assert set(record.subjects) == {"arabic", "english", "math", "science", "history"}
    assert record.subjects["math"].completion_ratio == pytest.approx(0.2)
    assert record.subjects["arabic"].total_chapters == 0

    with pytest.raises(RecordValidationError):
        ProgressRecord.parse({"subjects": {"art": {}}})


def test_progress_rejects_more_completed_than_total() -> None:
    with pytest.raises(RecordValidationError):
        ProgressRecord.parse({"subjects": {"math": {"chapters_completed": 11, "total_chapters": 10}}})


def test_progress_codec_validate_change_and_apply() -> None:
    subject, entry = progress_codec.validate_change(
        "Science",
        {"chapters_completed": 3, "total_chapters": 8, "exam_scores": [{"score": 91, "date": "2026-10-01"}]},
    )
    assert subject == "science"
    assert isinstance(entry, SubjectProgress)

    updated = progress_codec.apply_changes(progress_codec.default(), {subject: entry})
    assert updated.subjects["science"].exam_scores[0].score == 91

    with pytest.raises(RecordValidationError):
        progress_codec.validate_change("science", {"exam_scores": [{"score": 140}]})


def test_envelope_normalizes_naive_timestamps() -> None:
    envelope = StoredEnvelope(kind="schedule", schema_version=3, last_modified=datetime(2026, 10, 16, 17, 0))

    assert envelope.last_modified.tzinfo is not None
    assert envelope.last_modified == datetime(2026, 10, 16, 17, 0, tzinfo=timezone.utc)


def test_envelope_same_content_ignores_timestamp() -> None:
    first = StoredEnvelope(kind="progress", schema_version=2, payload={"subjects": {}})
    second = first.model_copy(update={"last_modified": datetime(2030, 1, 1, tzinfo=timezone.utc)})

    assert first.same_content(second)
    assert not first.same_content(second.model_copy(update={"schema_version": 1}))


def test_schedule_rejects_keys_that_collapse_to_the_same_slot() -> None:
    with pytest.raises(RecordValidationError):
        ScheduleRecord.from_slots({"arabic-mon": "9:00", "Arabic-Mon": "-"})
    with pytest.raises(RecordValidationError):
        schedule_codec.from_payload({"slots": {"math-fri": "-", " math-fri": "11:00"}})
