"""SMTP delivery of the weekly report email."""

from __future__ import annotations

import logging
import smtplib
import ssl
from dataclasses import dataclass, field
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Dict, Literal, Optional, Protocol

logger = logging.getLogger(__name__)

DeliveryErrorKind = Literal["auth", "connection", "refused", "smtp", "config", "report"]

BODY_TEMPLATE = (
    "Hello,\n\n"
    "Attached is the weekly progress report for {student_name} ({report_date}).\n"
    "Overall readiness: {overall_readiness} across {subject_count} tracked subject(s).\n"
)


@dataclass(frozen=True)
class OutgoingEmail:
    recipient_address: str
    subject_template: str
    body_variables: Dict[str, str]
    attachment: bytes
    attachment_filename: str = "weekly-report.pdf"

    def render_subject(self) -> str:
        return self.subject_template.format(**self.body_variables)

    def render_body(self) -> str:
        return BODY_TEMPLATE.format(**self.body_variables)


@dataclass(frozen=True)
class DeliveryResult:
    success: bool
    error_kind: Optional[DeliveryErrorKind] = None
    detail: str = field(default="")


class EmailSender(Protocol):
    def send(self, message: OutgoingEmail) -> DeliveryResult:  # pragma: no cover - protocol definition
        ...


class SmtpEmailSender:
    """Send report emails over SMTP (implicit TLS on 465, STARTTLS otherwise)."""

    def __init__(
        self,
        host: str,
        port: int,
        *,
        username: Optional[str] = None,
        password: Optional[str] = None,
        sender: Optional[str] = None,
        timeout_seconds: float = 15.0,
    ) -> None:
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._sender = sender or username
        self._timeout = timeout_seconds

    def _build(self, message: OutgoingEmail) -> MIMEMultipart:
        envelope = MIMEMultipart("mixed")
        envelope["Subject"] = message.render_subject()
        envelope["From"] = self._sender or ""
        envelope["To"] = message.recipient_address
        envelope.attach(MIMEText(message.render_body(), "plain", "utf-8"))
        attachment = MIMEApplication(message.attachment, _subtype="pdf")
        attachment.add_header("Content-Disposition", "attachment", filename=message.attachment_filename)
        envelope.attach(attachment)
        return envelope

    def send(self, message: OutgoingEmail) -> DeliveryResult:
        if not self._sender:
            return DeliveryResult(success=False, error_kind="config", detail="No sender address configured.")
        if not message.recipient_address:
            return DeliveryResult(success=False, error_kind="config", detail="No recipient address configured.")
        try:
            envelope = self._build(message)
        except (KeyError, IndexError) as exc:
            return DeliveryResult(success=False, error_kind="config", detail=f"Template variable missing: {exc}")

        try:
            if self._port == 465:
                context = ssl.create_default_context()
                with smtplib.SMTP_SSL(self._host, self._port, context=context, timeout=self._timeout) as server:
                    self._login(server)
                    server.sendmail(self._sender, [message.recipient_address], envelope.as_string())
            else:
                with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as server:
                    server.ehlo()
                    server.starttls(context=ssl.create_default_context())
                    self._login(server)
                    server.sendmail(self._sender, [message.recipient_address], envelope.as_string())
        except smtplib.SMTPAuthenticationError as exc:
            logger.warning("SMTP authentication failed for %s: %s", self._host, exc)
            return DeliveryResult(success=False, error_kind="auth", detail=str(exc))
        except smtplib.SMTPRecipientsRefused as exc:
            return DeliveryResult(success=False, error_kind="refused", detail=str(exc))
        except smtplib.SMTPException as exc:
            logger.warning("SMTP delivery failed: %s", exc)
            return DeliveryResult(success=False, error_kind="smtp", detail=str(exc))
        except OSError as exc:
            logger.warning("Could not reach SMTP server %s:%s: %s", self._host, self._port, exc)
            return DeliveryResult(success=False, error_kind="connection", detail=str(exc))
        logger.info("Sent weekly report to %s", message.recipient_address)
        return DeliveryResult(success=True)

    def _login(self, server: smtplib.SMTP) -> None:
        if self._username and self._password:
            server.login(self._username, self._password)


__all__ = [
    "BODY_TEMPLATE",
    "DeliveryResult",
    "OutgoingEmail",
    "EmailSender",
    "SmtpEmailSender",
]
