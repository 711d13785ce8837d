"""
SMTP email notifications.
"""

import logging
from email.message import EmailMessage

import aiosmtplib

from secretme.domain.notification import SendResult

logger = logging.getLogger(__name__)

EMAIL_SUBJECT = "You have a new notification on SecretMe"


class EmailSender:
    """Sends plain-text notification emails over SMTP."""

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        from_email: str,
        start_tls: bool = True,
        timeout: float = 15.0,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.from_email = from_email
        self.start_tls = start_tls
        self.timeout = timeout

    def build_message(self, to_email: str, body: str) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = EMAIL_SUBJECT
        msg["From"] = self.from_email
        msg["To"] = to_email
        # Telegram-style emphasis markers read as noise in email
        msg.set_content(body.replace("*", ""))
        return msg

    async def send(self, destination: str, message: str) -> SendResult:
        """Send `message` to the email address `destination`."""
        if not self.host:
            return SendResult(success=False, error="SMTP is not configured")

        try:
            await aiosmtplib.send(
                self.build_message(destination, message),
                hostname=self.host,
                port=self.port,
                username=self.username or None,
                password=self.password or None,
                start_tls=self.start_tls,
                timeout=self.timeout,
            )
        except aiosmtplib.SMTPException as e:
            logger.error(f"Failed to send email to {destination}: {e}")
            return SendResult(success=False, error=f"SMTP error: {e}")

        logger.info(f"Email sent successfully to {destination}")
        return SendResult(success=True)
