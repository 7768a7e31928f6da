"""Outbound SMS and email.

Delivery is best effort: failures are logged and reported as ``False`` so a
reminder or an invitation never rolls back the work that triggered it.
"""
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Callable, Iterable, Optional

from app.config import settings

logger = logging.getLogger(__name__)


def log_sms_sender(phone: str, message: str) -> None:
    """Placeholder gateway: no SMS provider is wired in yet, so messages are logged."""
    logger.info("SMS [%s] to %s: %s", settings.SMS_SENDER_ID, phone, message)


def smtp_email_sender(email: str, subject: str, body: str) -> None:
    if not settings.SMTP_SERVER:
        logger.info("SMTP not configured; email to %s (%s) not sent", email, subject)
        return

    msg = MIMEMultipart()
    msg['From'] = settings.SENDER_EMAIL
    msg['To'] = email
    msg['Subject'] = subject
    msg.attach(MIMEText(body, 'plain'))

    with smtplib.SMTP(settings.SMTP_SERVER, settings.SMTP_PORT) as server:
        server.starttls()
        if settings.SMTP_USER:
            server.login(settings.SMTP_USER, settings.SMTP_PASSWORD)
        server.send_message(msg)


class NotificationService:
    def __init__(
        self,
        sms_sender: Optional[Callable[[str, str], None]] = None,
        email_sender: Optional[Callable[[str, str, str], None]] = None,
    ):
        self.sms_sender = sms_sender or log_sms_sender
        self.email_sender = email_sender or smtp_email_sender

    def send_sms(self, phone: str, message: str) -> bool:
        if not phone:
            logger.warning("SMS skipped: no phone number")
            return False
        try:
            self.sms_sender(phone, message)
            return True
        except Exception as e:
            logger.error("Failed to send SMS to %s: %s", phone, e)
            return False

    def send_bulk_sms(self, phones: Iterable[str], message: str) -> int:
        """Send to each number; returns how many were handed to the gateway."""
        return sum(1 for phone in phones if self.send_sms(phone, message))

    def send_email(self, email: str, subject: str, body: str) -> bool:
        try:
            self.email_sender(email, subject, body)
            return True
        except Exception as e:
            logger.error("Failed to send email to %s: %s", email, e)
            return False


_default_service = NotificationService()


def get_notifier() -> NotificationService:
    return _default_service
