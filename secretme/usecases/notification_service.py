"""
Notification dispatch: eligibility checks, routing to the queue and test sends.
"""

import asyncio
import logging
from typing import Dict, Mapping, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from secretme.domain.exceptions import (
    ChannelNotConfiguredError,
    PremiumRequiredError,
    UserNotFoundError,
)
from secretme.domain.notification import (
    DispatchResult,
    DispatchStatus,
    NotificationChannel,
    SendResult,
)
from secretme.domain.user import Message, NotificationSettings, User
from secretme.infrastructure.senders import ChannelSender
from secretme.usecases.notification_queue import NotificationQueue
from secretme.utils.messages import format_message, truncate_preview

logger = logging.getLogger(__name__)

PREMIUM_CHANNELS = (NotificationChannel.TELEGRAM, NotificationChannel.WHATSAPP)


def resolve_destination(
    channel: NotificationChannel,
    user: User,
    settings: Optional[NotificationSettings],
) -> Optional[str]:
    """Address for `channel` from the user's profile and settings, if configured."""
    if channel == NotificationChannel.EMAIL:
        return user.email or None
    if settings is None:
        return None
    if channel == NotificationChannel.TELEGRAM:
        return settings.telegram_id or None
    if channel == NotificationChannel.WHATSAPP:
        return settings.whatsapp_number or None
    return None


class NotificationDispatchService:
    """Service class for deciding whether and how a user is notified."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        queue: NotificationQueue,
        senders: Mapping[NotificationChannel, ChannelSender],
        app_url: str,
        send_timeout: float = 15.0,
    ):
        self.session_factory = session_factory
        self.queue = queue
        self.senders: Dict[NotificationChannel, ChannelSender] = dict(senders)
        self.app_url = app_url.rstrip("/")
        self.send_timeout = send_timeout

    def profile_url(self, user: User) -> str:
        return f"{self.app_url}/{user.username or user.id}"

    async def _load_user(
        self, session: AsyncSession, user_id: str
    ) -> Tuple[Optional[User], Optional[NotificationSettings]]:
        user = await session.get(User, user_id)
        if user is None:
            return None, None
        return user, await session.get(NotificationSettings, user_id)

    async def notify_new_message(self, user_id: str, message_id: str) -> DispatchResult:
        """
        Enqueue a "new message" notification for the message's recipient.

        Users that are not premium, have notifications disabled or have no
        usable channel are skipped; skipping is not an error.
        """
        try:
            async with self.session_factory() as session:
                user, settings = await self._load_user(session, user_id)
                message = await session.get(Message, message_id)
        except SQLAlchemyError as e:
            logger.exception(f"Error loading notification data for user {user_id}: {e}")
            return DispatchResult(status=DispatchStatus.FAILED, reason="Storage unavailable")

        if user is None:
            return DispatchResult(status=DispatchStatus.FAILED, reason="User not found")
        if message is None:
            return DispatchResult(status=DispatchStatus.FAILED, reason="Message not found")

        return await self._dispatch(
            user,
            settings,
            template="new_message",
            preference="notify_new_messages",
            preview=message.content,
            url=self.profile_url(user),
            message_id=message_id,
        )

    async def notify_reply(self, message_id: str, reply_preview: Optional[str] = None) -> DispatchResult:
        """
        Enqueue a "reply" notification for the signed-in sender of a message.

        Anonymous senders cannot be notified and are skipped.
        """
        try:
            async with self.session_factory() as session:
                message = await session.get(Message, message_id)
                if message is None:
                    return DispatchResult(status=DispatchStatus.FAILED, reason="Message not found")
                if not message.sender_user_id:
                    return DispatchResult(status=DispatchStatus.SKIPPED, reason="Sender is anonymous")
                sender, settings = await self._load_user(session, message.sender_user_id)
                recipient = await session.get(User, message.recipient_id)
        except SQLAlchemyError as e:
            logger.exception(f"Error loading reply notification data for message {message_id}: {e}")
            return DispatchResult(status=DispatchStatus.FAILED, reason="Storage unavailable")

        if sender is None:
            return DispatchResult(status=DispatchStatus.SKIPPED, reason="Sender account no longer exists")

        return await self._dispatch(
            sender,
            settings,
            template="reply",
            preference="notify_replies",
            preview=reply_preview or message.reply or "",
            url=self.profile_url(recipient) if recipient is not None else self.app_url,
            message_id=message_id,
        )

    async def _dispatch(
        self,
        user: User,
        settings: Optional[NotificationSettings],
        template: str,
        preference: str,
        preview: str,
        url: str,
        message_id: str,
    ) -> DispatchResult:
        skip_reason = None
        if not user.is_premium:
            skip_reason = "User is not premium"
        elif settings is None or not settings.enabled:
            skip_reason = "Notifications are disabled"
        elif not getattr(settings, preference):
            skip_reason = f"{template} notifications are disabled"

        channel = None
        destination = None
        if skip_reason is None:
            try:
                channel = NotificationChannel(settings.channel)
            except ValueError:
                skip_reason = f"No notification channel selected ({settings.channel})"
            else:
                destination = resolve_destination(channel, user, settings)
                if not destination:
                    skip_reason = f"{channel.value} channel is not configured"

        if skip_reason is not None:
            logger.info(f"Skipping {template} notification for user {user.id}: {skip_reason}")
            return DispatchResult(status=DispatchStatus.SKIPPED, reason=skip_reason)

        payload = {
            "template": template,
            "destination": destination,
            "name": user.display_name,
            "preview": truncate_preview(preview),
            "url": url,
        }
        item = await self.queue.enqueue(
            recipient_user_id=user.id,
            channel=channel,
            payload=payload,
            message_id=message_id,
            notification_type=template,
        )
        if item is None:
            return DispatchResult(status=DispatchStatus.FAILED, reason="Could not enqueue notification")
        return DispatchResult(status=DispatchStatus.ENQUEUED, queue_item_id=item.id)

    async def send_test_notification(self, user_id: str, channel: NotificationChannel) -> SendResult:
        """
        Send a test message right away, bypassing the queue.

        Raises:
            UserNotFoundError: unknown user
            PremiumRequiredError: Telegram and WhatsApp need premium
            ChannelNotConfiguredError: no destination for the channel
        """
        channel = NotificationChannel(channel)
        async with self.session_factory() as session:
            user, settings = await self._load_user(session, user_id)

        if user is None:
            raise UserNotFoundError(user_id)
        if channel in PREMIUM_CHANNELS and not user.is_premium:
            raise PremiumRequiredError(f"{channel.value} notifications are a premium feature")

        destination = resolve_destination(channel, user, settings)
        if not destination:
            raise ChannelNotConfiguredError(channel.value)

        sender = self.senders.get(channel)
        if sender is None:
            raise ChannelNotConfiguredError(channel.value)

        message = format_message("test", {"name": user.display_name})
        try:
            result = await asyncio.wait_for(sender.send(destination, message), timeout=self.send_timeout)
        except asyncio.TimeoutError:
            result = SendResult(success=False, error=f"Channel send timed out after {self.send_timeout:g}s")
        except Exception as e:
            logger.exception(f"Test {channel.value} notification for user {user_id} raised: {e}")
            result = SendResult(success=False, error=str(e) or e.__class__.__name__)

        if result.success:
            logger.info(f"Test {channel.value} notification sent to user {user_id}")
        else:
            logger.warning(f"Test {channel.value} notification for user {user_id} failed: {result.error}")
        return result
