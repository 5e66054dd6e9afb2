"""
Outbound email transport
SMTP sender for production plus a mock sender with configurable failures
"""
import logging
import random
import smtplib
import threading
import uuid
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import make_msgid
from typing import Iterable, List, Optional

from .config import Settings, get_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SendResult:
    """Delivery report for a single message"""
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class OutgoingEmail:
    to: str
    subject: str
    html: str
    text: str


class SmtpEmailSender:
    """
    Sends multipart (text + HTML) messages over SMTP.
    Delivery problems are reported through ``SendResult``, never raised.
    """

    def __init__(self, settings: Optional[Settings] = None, timeout: float = 30.0):
        self.settings = settings or get_settings()
        self.timeout = timeout

    def _connect(self) -> smtplib.SMTP:
        server = smtplib.SMTP(self.settings.smtp_host, self.settings.smtp_port, timeout=self.timeout)
        server.ehlo()
        if server.has_extn('starttls'):
            server.starttls()
            server.ehlo()
        if self.settings.smtp_user and self.settings.smtp_pass:
            server.login(self.settings.smtp_user, self.settings.smtp_pass)
        return server

    def build_message(self, to: str, subject: str, html: str, text: str) -> EmailMessage:
        message = EmailMessage()
        if self.settings.sender_address:
            message['From'] = self.settings.sender_address
        message['To'] = to
        message['Subject'] = subject
        message['Message-ID'] = make_msgid()
        message.set_content(text)
        message.add_alternative(html, subtype='html')
        return message

    def send(self, to: str, subject: str, html: str, text: str) -> SendResult:
        if not to:
            return SendResult(success=False, error='Missing recipient address')

        message = self.build_message(to, subject, html, text)
        try:
            with self._connect() as server:
                server.send_message(message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Error sending email to %s: %s", to, e)
            return SendResult(success=False, error=str(e))

        logger.info("Email sent successfully: %s", message['Message-ID'])
        return SendResult(success=True, message_id=message['Message-ID'])

    def verify_connection(self) -> bool:
        """Check that the SMTP server accepts our connection and credentials"""
        try:
            with self._connect() as server:
                server.noop()
        except (smtplib.SMTPException, OSError) as e:
            logger.error("SMTP connection failed: %s", e)
            return False
        logger.info("SMTP connection verified successfully")
        return True


class MockEmailSender:
    """
    In-process sender for tests and local runs
    Records every delivered message and fails on demand
    """

    def __init__(self, failure_rate: float = 0.0, failing_recipients: Iterable[str] = (),
                 raise_for: Iterable[str] = ()):
        """
        Args:
            failure_rate: Probability of a random delivery failure (0.0 - 1.0)
            failing_recipients: Addresses whose delivery always reports failure
            raise_for: Addresses whose delivery raises instead of reporting
        """
        self.failure_rate = max(0.0, min(1.0, failure_rate))
        self.failing_recipients = {address.lower() for address in failing_recipients}
        self.raise_for = {address.lower() for address in raise_for}
        self.sent: List[OutgoingEmail] = []
        self.attempts = 0
        self._lock = threading.Lock()

    def send(self, to: str, subject: str, html: str, text: str) -> SendResult:
        with self._lock:
            self.attempts += 1

        address = (to or '').lower()
        if address in self.raise_for:
            raise ConnectionError(f"SMTP connection dropped while sending to {to}")
        if not to or address in self.failing_recipients or random.random() < self.failure_rate:
            return SendResult(success=False, error=f"Mailbox unavailable: {to}")

        with self._lock:
            self.sent.append(OutgoingEmail(to=to, subject=subject, html=html, text=text))
        return SendResult(success=True, message_id=f"<{uuid.uuid4().hex}@mock>")

    def verify_connection(self) -> bool:
        return True

    def recipients(self) -> List[str]:
        with self._lock:
            return [message.to for message in self.sent]
