"""SMTP e-mail sender."""

import asyncio
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr

import structlog

from subtrack.communications.models import DispatchResult, EmailMessage, NotificationChannel
from subtrack.settings import Settings, get_settings

logger = structlog.get_logger(__name__)


class EmailSender:
    """Send e-mail through the configured SMTP server.

    ``smtplib`` is blocking, so sends run in a worker thread.
    """

    def __init__(
        self,
        config: Settings.NotificationSettings | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.config = config or get_settings().notifications
        self.timeout = timeout

    @property
    def is_configured(self) -> bool:
        return bool(self.config.email_enabled and self.config.smtp_host)

    def _create_message(self, message: EmailMessage) -> MIMEMultipart:
        mime = MIMEMultipart("alternative")
        mime["Subject"] = message.subject
        mime["From"] = formataddr((self.config.from_name, self.config.from_address))
        mime["To"] = ", ".join(message.to)
        mime.attach(MIMEText(message.text_body, "plain", "utf-8"))
        if message.html_body:
            mime.attach(MIMEText(message.html_body, "html", "utf-8"))
        return mime

    def _send_sync(self, message: EmailMessage) -> None:
        mime = self._create_message(message)
        smtp_class = smtplib.SMTP_SSL if self.config.smtp_use_ssl else smtplib.SMTP
        with smtp_class(self.config.smtp_host, self.config.smtp_port, timeout=self.timeout) as server:
            if self.config.smtp_use_tls and not self.config.smtp_use_ssl:
                server.starttls()
            if self.config.smtp_username and self.config.smtp_password:
                server.login(self.config.smtp_username, self.config.smtp_password)
            server.send_message(mime, to_addrs=message.to)

    async def send(self, message: EmailMessage) -> DispatchResult:
        recipient = ", ".join(message.to)
        if not self.is_configured:
            logger.warning("email.not_configured", recipient=recipient)
            return DispatchResult(
                channel=NotificationChannel.EMAIL,
                success=False,
                recipient=recipient,
                error="Email service not configured",
            )

        try:
            await asyncio.to_thread(self._send_sync, message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("email.send_failed", recipient=recipient, error=str(e))
            return DispatchResult(
                channel=NotificationChannel.EMAIL,
                success=False,
                recipient=recipient,
                error=str(e),
            )

        logger.info("email.sent", recipient=recipient, subject=message.subject)
        return DispatchResult(channel=NotificationChannel.EMAIL, success=True, recipient=recipient)


__all__ = ["EmailSender"]
