"""
Channel sender interface and registry.
"""

from typing import Dict, Protocol

from secretme.config.settings import Settings
from secretme.domain.notification import NotificationChannel, SendResult
from secretme.infrastructure.email_sender import EmailSender
from secretme.infrastructure.telegram import TelegramSender
from secretme.infrastructure.twilio_whatsapp import WhatsAppSender


class ChannelSender(Protocol):
    """Anything that can deliver a rendered message to a destination."""

    async def send(self, destination: str, message: str) -> SendResult:
        ...


def build_channel_senders(settings: Settings) -> Dict[NotificationChannel, ChannelSender]:
    """Create one sender per channel from application settings."""
    return {
        NotificationChannel.TELEGRAM: TelegramSender(
            bot_token=settings.telegram_bot_token,
            api_base=settings.telegram_api_base,
            timeout=settings.channel_timeout_seconds,
        ),
        NotificationChannel.WHATSAPP: WhatsAppSender(
            account_sid=settings.twilio_account_sid,
            auth_token=settings.twilio_auth_token,
            from_number=settings.twilio_whatsapp_number,
            timeout=settings.channel_timeout_seconds,
        ),
        NotificationChannel.EMAIL: EmailSender(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_user,
            password=settings.smtp_password,
            from_email=settings.smtp_from_email,
            start_tls=settings.smtp_start_tls,
            timeout=settings.channel_timeout_seconds,
        ),
    }
