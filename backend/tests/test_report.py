from __future__ import annotations

from datetime import date

import pytest

from studytrack.delivery import render_report_pdf
from studytrack.records import ProgressRecord, ScheduleRecord, SubjectProgress
from studytrack.report import ReportCompiler, subject_readiness


def _progress() -> ProgressRecord:
    return ProgressRecord.parse(
        {
            "subjects": {
                "math": {
                    "chapters_completed": 6,
                    "total_chapters": 10,
                    "exam_scores": [
                        {"score": 90, "date": "2026-10-10"},
                        {"score": 80, "date": "2026-09-20"},
                    ],
                },
                "science": {"chapters_completed": 3, "total_chapters": 4},
            }
        }
    )


def test_subject_readiness_blends_chapters_and_exams() -> None:
    assert subject_readiness(SubjectProgress(chapters_completed=3, total_chapters=4)) == pytest.approx(75.0)
    assert subject_readiness(_progress().subjects["math"]) == pytest.approx(70.0)
    assert subject_readiness(SubjectProgress()) == 0.0


def test_compile_orders_scores_and_counts_sessions() -> None:
    schedule = ScheduleRecord.from_slots({"math-mon": "9:00", "math-wed": "9:00 online", "arabic-sat": "10:00"})

    report = ReportCompiler().compile("Sara", _progress(), report_date=date(2026, 10, 16), schedule=schedule)

    assert [item.subject for item in report.per_subject] == ["arabic", "english", "math", "science", "history"]
    math = report.per_subject[2]
    assert [entry.score for entry in math.exam_scores] == [80, 90]
    assert math.weekly_sessions == 2
    assert report.per_subject[0].weekly_sessions == 1
    # Only math (70.0) and science (75.0) are tracked.
    assert report.overall_readiness_percent == pytest.approx(72.5)


def test_compile_with_nothing_tracked() -> None:
    report = ReportCompiler().compile("Sara", ProgressRecord(), report_date=date(2026, 10, 16))

    assert report.overall_readiness_percent == 0.0
    assert all(item.weekly_sessions == 0 for item in report.per_subject)


def test_email_variables() -> None:
    report = ReportCompiler().compile("Sara", _progress(), report_date=date(2026, 10, 16))

    assert ReportCompiler.email_variables(report) == {
        "student_name": "Sara",
        "report_date": "2026-10-16",
        "overall_readiness": "72.5%",
        "subject_count": "2",
    }


def test_render_report_pdf_produces_pdf_bytes() -> None:
    report = ReportCompiler().compile("Sara", _progress(), report_date=date(2026, 10, 16))

    document = render_report_pdf(report)

    assert document.startswith(b"%PDF")
    assert len(document) > 500
