"""
Twilio WhatsApp messaging integration with retry logic.
"""

import asyncio
import logging
import re
from typing import Optional

from twilio.http.http_client import TwilioHttpClient
from twilio.rest import Client
from twilio.base.exceptions import TwilioException, TwilioRestException
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from secretme.domain.notification import SendResult

logger = logging.getLogger(__name__)


def format_phone_number(phone: str) -> str:
    """
    Normalise a phone number to E.164 digits.

    Local numbers starting with 0 are treated as Indonesian (62).

    Args:
        phone: Phone number as typed by the user

    Returns:
        Digits only, with country code
    """
    digits = re.sub(r"\D", "", phone or "")
    if digits.startswith("0"):
        return "62" + digits[1:]
    if digits.startswith("62") or (phone or "").strip().startswith("+"):
        return digits
    return "62" + digits


def to_whatsapp_address(phone: str) -> str:
    """Format a phone number as a Twilio WhatsApp address."""
    if phone.startswith("whatsapp:"):
        return phone
    return f"whatsapp:+{format_phone_number(phone)}"


class WhatsAppSender:
    """Sends WhatsApp messages through Twilio."""

    def __init__(self, account_sid: str, auth_token: str, from_number: str, timeout: Optional[float] = None):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.timeout = timeout
        self._client: Optional[Client] = None

    @property
    def client(self) -> Client:
        if self._client is None:
            # The send runs in a worker thread that cancellation cannot stop
            http_client = TwilioHttpClient(timeout=self.timeout) if self.timeout else None
            self._client = Client(self.account_sid, self.auth_token, http_client=http_client)
        return self._client

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        retry=retry_if_exception_type(TwilioRestException),
        reraise=True
    )
    def _send_message_sync(self, message: str, to_number: str):
        """
        Synchronous Twilio message send with retry logic.

        Args:
            message: Text message to send
            to_number: Recipient's WhatsApp address

        Returns:
            Twilio message object
        """
        return self.client.messages.create(
            body=message,
            from_=self.from_number,
            to=to_number
        )

    async def send(self, destination: str, message: str) -> SendResult:
        """
        Send a WhatsApp text message.

        Args:
            destination: Recipient phone number
            message: Rendered message text

        Returns:
            SendResult with Twilio's error message on failure
        """
        if not (self.account_sid and self.auth_token and self.from_number):
            return SendResult(success=False, error="Twilio WhatsApp is not configured")

        try:
            msg = await asyncio.to_thread(self._send_message_sync, message, to_whatsapp_address(destination))
        except TwilioRestException as e:
            logger.error(f"Failed to send WhatsApp message after retries: {e}")
            return SendResult(success=False, error=f"Twilio error {e.code}: {e.msg}")
        except TwilioException as e:
            logger.error(f"Twilio client error: {e}")
            return SendResult(success=False, error=str(e))

        logger.info(f"WhatsApp message sent successfully. SID: {msg.sid}")
        return SendResult(success=True)
