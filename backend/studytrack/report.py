"""Compile progress and schedule state into the weekly report payload."""

from __future__ import annotations

from datetime import date
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .records import SUBJECTS, ExamScore, ProgressRecord, ScheduleRecord, SubjectProgress

CHAPTER_WEIGHT = 0.6
EXAM_WEIGHT = 0.4


class SubjectReport(BaseModel):
    subject: str
    chapters_completed: int
    total_chapters: int
    exam_scores: List[ExamScore] = Field(default_factory=list)
    weekly_sessions: int = 0
    readiness_percent: float = 0.0


class ProgressReport(BaseModel):
    """Structured input for the PDF renderer and the email template."""

    student_name: str
    report_date: date
    per_subject: List[SubjectReport] = Field(default_factory=list)
    overall_readiness_percent: float = 0.0


def subject_readiness(progress: SubjectProgress) -> float:
    """Blend chapter completion with the exam average, as a 0-100 percentage.

    Subjects without exams are judged on chapter completion alone.
    """
    completion = progress.completion_ratio * 100
    if not progress.exam_scores:
        return round(completion, 1)
    exam_average = sum(entry.score for entry in progress.exam_scores) / len(progress.exam_scores)
    return round(CHAPTER_WEIGHT * completion + EXAM_WEIGHT * exam_average, 1)


def _sessions_per_subject(schedule: Optional[ScheduleRecord]) -> Dict[str, int]:
    counts = {subject: 0 for subject in SUBJECTS}
    if schedule is None:
        return counts
    for key in schedule.filled_slots():
        subject, _, _ = key.partition("-")
        counts[subject] = counts.get(subject, 0) + 1
    return counts


class ReportCompiler:
    """Pure transformation from stored records to a ``ProgressReport``."""

    def compile(
        self,
        student_name: str,
        progress: ProgressRecord,
        *,
        report_date: date,
        schedule: Optional[ScheduleRecord] = None,
    ) -> ProgressReport:
        sessions = _sessions_per_subject(schedule)
        per_subject: List[SubjectReport] = []
        for subject in SUBJECTS:
            entry = progress.subjects.get(subject, SubjectProgress())
            per_subject.append(
                SubjectReport(
                    subject=subject,
                    chapters_completed=entry.chapters_completed,
                    total_chapters=entry.total_chapters,
                    exam_scores=sorted(
                        entry.exam_scores,
                        key=lambda score: score.date or date.min,
                    ),
                    weekly_sessions=sessions.get(subject, 0),
                    readiness_percent=subject_readiness(entry),
                )
            )
        tracked = [item for item in per_subject if item.total_chapters > 0 or item.exam_scores]
        overall = 0.0
        if tracked:
            overall = round(sum(item.readiness_percent for item in tracked) / len(tracked), 1)
        return ProgressReport(
            student_name=student_name,
            report_date=report_date,
            per_subject=per_subject,
            overall_readiness_percent=overall,
        )

    @staticmethod
    def email_variables(report: ProgressReport) -> Dict[str, str]:
        tracked = [item for item in report.per_subject if item.total_chapters > 0 or item.exam_scores]
        return {
            "student_name": report.student_name,
            "report_date": report.report_date.isoformat(),
            "overall_readiness": f"{report.overall_readiness_percent:.1f}%",
            "subject_count": str(len(tracked)),
        }


__all__ = ["ProgressReport", "ReportCompiler", "SubjectReport", "subject_readiness"]
