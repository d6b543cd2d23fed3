"""Report rendering and delivery collaborators."""

from .mailer import DeliveryResult, OutgoingEmail, EmailSender, SmtpEmailSender
from .pdf import ReportRenderer, render_report_pdf

__all__ = [
    "DeliveryResult",
    "OutgoingEmail",
    "EmailSender",
    "ReportRenderer",
    "SmtpEmailSender",
    "render_report_pdf",
]
