"""
Telegram Bot API messaging integration with retry logic.
"""

import logging
from typing import Optional

import httpx
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from secretme.domain.notification import SendResult

logger = logging.getLogger(__name__)


class TelegramSender:
    """Sends messages to a Telegram chat through the Bot API."""

    def __init__(
        self,
        bot_token: str,
        api_base: str = "https://api.telegram.org",
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.bot_token = bot_token
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True
    )
    async def _post_message(self, chat_id: str, text: str) -> httpx.Response:
        """
        POST sendMessage with retry on transport errors.

        Args:
            chat_id: Destination chat id
            text: Markdown message text

        Returns:
            Raw HTTP response
        """
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            return await client.post(
                f"{self.api_base}/bot{self.bot_token}/sendMessage",
                json={
                    "chat_id": chat_id,
                    "text": text,
                    "parse_mode": "Markdown",
                    "disable_web_page_preview": False,
                },
            )

    async def send(self, destination: str, message: str) -> SendResult:
        """
        Send a Telegram message.

        Args:
            destination: Telegram chat id
            message: Rendered message text

        Returns:
            SendResult with the API's error description on failure
        """
        if not self.bot_token:
            return SendResult(success=False, error="Telegram bot token is not configured")

        try:
            response = await self._post_message(destination, message)
        except httpx.HTTPError as e:
            logger.error(f"Failed to reach Telegram API after retries: {e}")
            return SendResult(success=False, error=f"Telegram API unreachable: {e}")

        if response.status_code >= 400:
            try:
                description = response.json().get("description")
            except ValueError:
                description = None
            error = f"Telegram API error: {description or response.reason_phrase}"
            logger.error(f"{error} (chat {destination})")
            return SendResult(success=False, error=error)

        logger.info(f"Telegram message sent to chat {destination}")
        return SendResult(success=True)
