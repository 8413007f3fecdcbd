from __future__ import annotations

import smtplib
from collections.abc import Sequence
from email.message import EmailMessage
from typing import Protocol

from structlog.typing import FilteringBoundLogger

from jobctl.config import SmtpSettings
from jobctl.logger import get_logger


class Mailer(Protocol):
    def send_mail(self, sender: str, recipients: Sequence[str], subject: str, body: str) -> None: ...


class SmtpMailer:
    """Sends HTML mail through one SMTP connection per message."""

    def __init__(
        self, settings: SmtpSettings, log_event: FilteringBoundLogger | None = None
    ) -> None:
        self._settings = settings
        self.log_event = log_event or get_logger("mail")

    def build_message(
        self, sender: str, recipients: Sequence[str], subject: str, body: str
    ) -> EmailMessage:
        message = EmailMessage()
        message["From"] = sender
        message["To"] = ", ".join(recipients)
        message["Subject"] = subject
        message.set_content(body, subtype="html")
        return message

    def send_mail(self, sender: str, recipients: Sequence[str], subject: str, body: str) -> None:
        message = self.build_message(sender, recipients, subject, body)
        settings = self._settings
        with smtplib.SMTP(settings.host, settings.port, timeout=settings.timeout_sec) as smtp:
            if settings.starttls:
                smtp.starttls()
            if settings.username:
                smtp.login(settings.username, settings.password.get_secret_value())
            smtp.send_message(message)
        self.log_event.info("mail.sent", subject=subject, recipients=list(recipients))
