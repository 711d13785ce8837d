"""
Durable notification queue backed by the `notification_queue` table.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update, delete, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from secretme.domain.notification import (
    NotificationChannel,
    QueueItem,
    QueueStats,
    QueueStatus,
    TERMINAL_STATUSES,
)
from secretme.utils.time import days_ago, utcnow

logger = logging.getLogger(__name__)

LAST_ERROR_MAX_LENGTH = 1000


class NotificationQueue:
    """
    Staging area for outbound notifications.

    Every operation runs in its own session, so the queue can be shared by
    concurrent request handlers and batch workers.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def enqueue(
        self,
        recipient_user_id: str,
        channel: NotificationChannel,
        payload: Dict[str, Any],
        message_id: Optional[str] = None,
        notification_type: str = "new_message",
    ) -> Optional[QueueItem]:
        """
        Persist a pending notification.

        Duplicate logical events are not detected here; callers enqueue
        each event once.

        Returns:
            The stored item, or None if storage is unavailable
        """
        now = utcnow()
        item = QueueItem(
            recipient_user_id=recipient_user_id,
            message_id=message_id,
            notification_type=notification_type,
            channel=NotificationChannel(channel),
            payload=payload,
            status=QueueStatus.PENDING,
            attempts=0,
            created_at=now,
            updated_at=now,
        )
        try:
            async with self.session_factory() as session:
                session.add(item)
                await session.commit()
        except SQLAlchemyError as e:
            logger.exception(f"Error enqueueing {channel} notification for {recipient_user_id}: {e}")
            return None

        logger.info(f"Enqueued {item.channel.value} notification {item.id} for user {recipient_user_id}")
        return item

    async def claim_batch(self, limit: int) -> List[QueueItem]:
        """
        Atomically move up to `limit` of the oldest pending items to processing.

        Selection and transition happen in one conditional UPDATE, so two
        concurrent claims never return the same item.

        Returns:
            Claimed items, oldest first; empty if storage is unavailable
        """
        if limit <= 0:
            return []

        oldest_pending = (
            select(QueueItem.id)
            .where(QueueItem.status == QueueStatus.PENDING)
            .order_by(QueueItem.created_at.asc(), QueueItem.id.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
            .scalar_subquery()
        )
        stmt = (
            update(QueueItem)
            .where(
                QueueItem.id.in_(oldest_pending),
                QueueItem.status == QueueStatus.PENDING,
            )
            .values(
                status=QueueStatus.PROCESSING,
                attempts=QueueItem.attempts + 1,
                updated_at=utcnow(),
            )
            .returning(QueueItem)
            .execution_options(synchronize_session=False)
        )

        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                items = list(result.scalars().all())
                await session.commit()
        except SQLAlchemyError as e:
            logger.exception(f"Error claiming notification batch: {e}")
            return []

        items.sort(key=lambda item: (item.created_at, item.id))
        if items:
            logger.info(f"Claimed {len(items)} notification(s) for processing")
        return items

    async def mark_completed(self, item_id: str) -> bool:
        """Move a processing item to completed. Returns False if nothing changed."""
        return await self._finish(item_id, QueueStatus.COMPLETED)

    async def mark_failed(self, item_id: str, error_message: str) -> bool:
        """Move a processing item to failed, recording the error. Returns False if nothing changed."""
        return await self._finish(
            item_id,
            QueueStatus.FAILED,
            last_error=(error_message or "Unknown error")[:LAST_ERROR_MAX_LENGTH],
        )

    async def _finish(self, item_id: str, status: QueueStatus, **values) -> bool:
        stmt = (
            update(QueueItem)
            .where(QueueItem.id == item_id, QueueItem.status == QueueStatus.PROCESSING)
            .values(status=status, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                updated = result.rowcount
                await session.commit()
        except SQLAlchemyError as e:
            logger.exception(f"Error marking notification {item_id} as {status.value}: {e}")
            return False

        if updated == 0:
            logger.warning(f"Notification {item_id} is not processing; ignoring transition to {status.value}")
            return False
        return True

    async def get(self, item_id: str) -> Optional[QueueItem]:
        """Load one item by id."""
        async with self.session_factory() as session:
            return await session.get(QueueItem, item_id)

    async def list_items(self, status: Optional[QueueStatus] = None, limit: int = 50) -> List[QueueItem]:
        """
        Items for the admin monitor, oldest first.

        Returns:
            Up to `limit` items, optionally filtered by status; empty if storage is unavailable
        """
        stmt = select(QueueItem).order_by(QueueItem.created_at.asc(), QueueItem.id.asc()).limit(limit)
        if status is not None:
            stmt = stmt.where(QueueItem.status == QueueStatus(status))
        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.exception(f"Error listing notification queue items: {e}")
            return []

    async def cleanup_old_items(self, days_to_keep: int = 7) -> int:
        """
        Delete completed and failed items created more than `days_to_keep` days ago.

        Pending and processing items are never touched.

        Returns:
            Number of deleted items, 0 if storage is unavailable
        """
        cutoff = days_ago(days_to_keep)
        stmt = (
            delete(QueueItem)
            .where(
                QueueItem.status.in_(TERMINAL_STATUSES),
                QueueItem.created_at < cutoff,
            )
            .execution_options(synchronize_session=False)
        )
        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                count = result.rowcount or 0
                await session.commit()
        except SQLAlchemyError as e:
            logger.exception(f"Error cleaning up old notifications: {e}")
            return 0

        logger.info(f"Cleaned up {count} notification(s) older than {days_to_keep} days")
        return count

    async def get_stats(self) -> QueueStats:
        """Count items per status."""
        stats = QueueStats()
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(QueueItem.status, func.count(QueueItem.id)).group_by(QueueItem.status)
                )
                rows = result.all()
        except SQLAlchemyError as e:
            logger.exception(f"Error getting queue stats: {e}")
            return stats

        for status, count in rows:
            setattr(stats, QueueStatus(status).value, count)
            stats.total += count
        return stats
