"""Alert delivery for threshold violations."""

import logging
import smtplib
from email.message import EmailMessage
from typing import Protocol, Sequence

from speedlog.errors import NotifyFailure
from speedlog.models import MeasurementRecord
from speedlog.sinks import TIMESTAMP_FORMAT

logger = logging.getLogger(__name__)

ALERT_SUBJECT = "Speed Alert: Threshold Exceeded"


class Notifier(Protocol):
    """Protocol for alert channels."""

    def notify(self, record: MeasurementRecord, reasons: Sequence[str]) -> None:
        """Deliver one alert. Raises NotifyFailure on error."""
        ...


def _describe(value: float | None, unit: str) -> str:
    if value is None:
        return "unavailable"
    return f"{value:.2f} {unit}"


def format_alert_body(record: MeasurementRecord, reasons: Sequence[str]) -> str:
    """Plain-text alert body listing the measurement and what was breached."""
    lines = [
        "Speed test results:",
        f"Timestamp: {record.timestamp.strftime(TIMESTAMP_FORMAT)}",
        f"Ping: {_describe(record.ping_ms, 'ms')}",
        f"Download: {_describe(record.download_mbps, 'Mbps')}",
        f"Upload: {_describe(record.upload_mbps, 'Mbps')}",
        "",
        "Thresholds exceeded:",
    ]
    lines.extend(f"- {reason}" for reason in reasons)
    return "\n".join(lines) + "\n"


class EmailNotifier:
    """Sends alerts as plain-text email over SMTP.

    Delivery is synchronous: notify() returns once the server has accepted
    the message, or raises NotifyFailure.
    """

    def __init__(
        self,
        recipient: str,
        host: str,
        port: int = 587,
        sender: str = "speedlog@localhost",
        username: str | None = None,
        password: str | None = None,
        starttls: bool = True,
        timeout_s: float = 30.0,
        smtp_factory=smtplib.SMTP,
    ):
        """Initialize email notifier.

        Args:
            recipient: Alert destination address
            host: SMTP server hostname
            port: SMTP server port
            sender: From address
            username: Login user, or None to skip authentication
            password: Login password
            starttls: Upgrade the connection with STARTTLS before sending
            timeout_s: Socket timeout for the SMTP session
            smtp_factory: Callable returning an smtplib.SMTP-like object
        """
        self.recipient = recipient
        self.host = host
        self.port = port
        self.sender = sender
        self.username = username
        self.password = password
        self.starttls = starttls
        self.timeout_s = timeout_s
        self._smtp_factory = smtp_factory

    def build_message(self, record: MeasurementRecord, reasons: Sequence[str]) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = ALERT_SUBJECT
        message["From"] = self.sender
        message["To"] = self.recipient
        message.set_content(format_alert_body(record, reasons))
        return message

    def notify(self, record: MeasurementRecord, reasons: Sequence[str]) -> None:
        message = self.build_message(record, reasons)
        try:
            with self._smtp_factory(self.host, self.port, timeout=self.timeout_s) as smtp:
                if self.starttls:
                    smtp.starttls()
                if self.username:
                    smtp.login(self.username, self.password or "")
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as e:
            raise NotifyFailure(f"Email to {self.recipient} via {self.host}:{self.port} failed: {e}") from e

        logger.info("Email alert sent to %s", self.recipient)
