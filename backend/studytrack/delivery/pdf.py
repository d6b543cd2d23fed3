"""Render the weekly ``ProgressReport`` to PDF bytes with reportlab."""

from __future__ import annotations

import io
from typing import List, Protocol

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import cm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from ..report import ProgressReport, SubjectReport

HEADER_COLOUR = colors.HexColor("#1f4e79")
ROW_SHADE = colors.HexColor("#eef3f8")


class ReportRenderer(Protocol):
    def __call__(self, report: ProgressReport) -> bytes:  # pragma: no cover - protocol definition
        ...


def _scores_cell(subject: SubjectReport) -> str:
    if not subject.exam_scores:
        return "-"
    parts: List[str] = []
    for entry in subject.exam_scores:
        label = f"{entry.score:.0f}"
        if entry.date is not None:
            label += f" ({entry.date.strftime('%d %b')})"
        parts.append(label)
    return ", ".join(parts)


def render_report_pdf(report: ProgressReport) -> bytes:
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        leftMargin=1.8 * cm,
        rightMargin=1.8 * cm,
        topMargin=1.8 * cm,
        bottomMargin=1.8 * cm,
        title=f"Weekly report - {report.student_name}",
    )
    styles = getSampleStyleSheet()
    heading = ParagraphStyle("Heading", parent=styles["Heading1"], textColor=HEADER_COLOUR)
    body = ParagraphStyle("Body", parent=styles["Normal"], fontSize=9, leading=12)

    story = [
        Paragraph(f"Weekly progress report: {report.student_name}", heading),
        Paragraph(f"Report date: {report.report_date.strftime('%A %d %B %Y')}", body),
        Paragraph(f"Overall readiness: <b>{report.overall_readiness_percent:.1f}%</b>", body),
        Spacer(1, 0.5 * cm),
    ]

    rows = [["Subject", "Chapters", "Sessions / week", "Exam scores", "Readiness"]]
    for subject in report.per_subject:
        rows.append(
            [
                subject.subject.title(),
                f"{subject.chapters_completed} / {subject.total_chapters}",
                str(subject.weekly_sessions),
                Paragraph(_scores_cell(subject), body),
                f"{subject.readiness_percent:.1f}%",
            ]
        )
    table = Table(rows, colWidths=[3 * cm, 2.5 * cm, 3 * cm, 6 * cm, 2.5 * cm], repeatRows=1)
    table.setStyle(
        TableStyle(
            [
                ("BACKGROUND", (0, 0), (-1, 0), HEADER_COLOUR),
                ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
                ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                ("FONTSIZE", (0, 0), (-1, -1), 9),
                ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, ROW_SHADE]),
                ("GRID", (0, 0), (-1, -1), 0.25, colors.grey),
                ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
            ]
        )
    )
    story.append(table)
    doc.build(story)
    return buffer.getvalue()


__all__ = ["ReportRenderer", "render_report_pdf"]
