"""
Batch worker that drains the notification queue.
"""

import asyncio
import logging
from typing import Dict, Mapping

from secretme.domain.notification import NotificationChannel, QueueItem, SendResult
from secretme.infrastructure.senders import ChannelSender
from secretme.usecases.notification_queue import NotificationQueue
from secretme.utils.messages import format_message

logger = logging.getLogger(__name__)


class DeliveryError(Exception):
    """A queue item could not be delivered."""


class QueueProcessor:
    """
    Claims a batch of pending notifications and hands each to its channel sender.

    Invoked by an external trigger (cron endpoint or the optional in-process
    scheduler); it never schedules itself. One instance is created per
    process at startup.
    """

    def __init__(
        self,
        queue: NotificationQueue,
        senders: Mapping[NotificationChannel, ChannelSender],
        send_timeout: float = 15.0,
        max_concurrency: int = 5,
    ):
        self.queue = queue
        self.senders: Dict[NotificationChannel, ChannelSender] = dict(senders)
        self.send_timeout = send_timeout
        self.max_concurrency = max(1, max_concurrency)

    async def process_queue(self, batch_size: int = 10) -> int:
        """
        Process one batch of pending notifications.

        Args:
            batch_size: Maximum number of items to claim

        Returns:
            Number of items attempted (completed + failed)
        """
        items = await self.queue.claim_batch(batch_size)
        if not items:
            return 0

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def run(item: QueueItem) -> None:
            async with semaphore:
                await self._process_item(item)

        await asyncio.gather(*(run(item) for item in items))

        logger.info(f"Processed {len(items)} notification(s)")
        return len(items)

    async def _process_item(self, item: QueueItem) -> None:
        """Deliver one item and record its terminal state. Never raises."""
        try:
            await self._deliver(item)
        except asyncio.TimeoutError:
            error = f"Channel send timed out after {self.send_timeout:g}s"
            logger.error(f"Notification {item.id} failed: {error}")
            await self.queue.mark_failed(item.id, error)
        except Exception as e:
            logger.exception(f"Error processing notification {item.id}: {e}")
            await self.queue.mark_failed(item.id, str(e) or e.__class__.__name__)
        else:
            await self.queue.mark_completed(item.id)

    async def _deliver(self, item: QueueItem) -> None:
        sender = self.senders.get(item.channel)
        if sender is None:
            raise DeliveryError(f"Unsupported notification channel: {item.channel}")

        payload = item.payload or {}
        destination = payload.get("destination")
        if not destination:
            raise DeliveryError(f"Missing destination for {item.channel.value} notification")

        try:
            message = format_message(payload.get("template", item.notification_type), payload)
        except KeyError as e:
            raise DeliveryError(f"Unknown message template: {e}") from e

        result: SendResult = await asyncio.wait_for(
            sender.send(destination, message),
            timeout=self.send_timeout,
        )
        if not result.success:
            raise DeliveryError(result.error or f"{item.channel.value} delivery failed")
