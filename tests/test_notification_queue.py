"""
Unit tests for the NotificationQueue state machine.
"""

import asyncio
from datetime import timedelta

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from secretme.domain.notification import Base, NotificationChannel, QueueItem, QueueStatus
from secretme.usecases.notification_queue import NotificationQueue
from secretme.utils.time import utcnow


async def add_item(session, item_id, created_at, status=QueueStatus.PENDING):
    """Insert a queue item with an explicit creation time."""
    item = QueueItem(
        id=item_id,
        recipient_user_id="user-1",
        channel=NotificationChannel.TELEGRAM,
        payload={"destination": "1", "template": "new_message"},
        status=status,
        attempts=0,
        created_at=created_at,
        updated_at=created_at,
    )
    session.add(item)
    await session.commit()
    return item


class TestEnqueue:
    """Tests for NotificationQueue.enqueue."""

    @pytest.mark.asyncio
    async def test_enqueue_persists_pending_item(self, queue, telegram_payload):
        item = await queue.enqueue("user-1", NotificationChannel.TELEGRAM, telegram_payload, message_id="m-1")

        assert item is not None
        stored = await queue.get(item.id)
        assert stored.status == QueueStatus.PENDING
        assert stored.attempts == 0
        assert stored.channel == NotificationChannel.TELEGRAM
        assert stored.payload == telegram_payload
        assert stored.message_id == "m-1"

    @pytest.mark.asyncio
    async def test_enqueue_accepts_channel_string(self, queue, telegram_payload):
        item = await queue.enqueue("user-1", "whatsapp", telegram_payload)

        assert item.channel == NotificationChannel.WHATSAPP

    @pytest.mark.asyncio
    async def test_enqueue_returns_none_when_storage_unavailable(self, telegram_payload):
        # No tables were created on this engine
        engine = create_async_engine("sqlite+aiosqlite:///:memory:")
        broken = NotificationQueue(async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False))

        assert await broken.enqueue("user-1", NotificationChannel.TELEGRAM, telegram_payload) is None

        await engine.dispose()


class TestClaimBatch:
    """Tests for NotificationQueue.claim_batch."""

    @pytest.mark.asyncio
    async def test_claims_oldest_first_up_to_limit(self, queue, test_session):
        now = utcnow()
        await add_item(test_session, "c", now - timedelta(minutes=1))
        await add_item(test_session, "a", now - timedelta(minutes=3))
        await add_item(test_session, "b", now - timedelta(minutes=2))

        claimed = await queue.claim_batch(2)

        assert [item.id for item in claimed] == ["a", "b"]
        assert all(item.status == QueueStatus.PROCESSING for item in claimed)
        assert all(item.attempts == 1 for item in claimed)
        assert (await queue.get("c")).status == QueueStatus.PENDING

    @pytest.mark.asyncio
    async def test_skips_items_that_are_not_pending(self, queue, test_session):
        now = utcnow()
        await add_item(test_session, "done", now - timedelta(minutes=5), QueueStatus.COMPLETED)
        await add_item(test_session, "busy", now - timedelta(minutes=4), QueueStatus.PROCESSING)
        await add_item(test_session, "bad", now - timedelta(minutes=3), QueueStatus.FAILED)
        await add_item(test_session, "new", now - timedelta(minutes=1))

        claimed = await queue.claim_batch(10)

        assert [item.id for item in claimed] == ["new"]

    @pytest.mark.asyncio
    async def test_successive_claims_do_not_overlap(self, queue, test_session):
        now = utcnow()
        for i in range(5):
            await add_item(test_session, f"item-{i}", now - timedelta(minutes=10 - i))

        first = await queue.claim_batch(3)
        second = await queue.claim_batch(3)
        third = await queue.claim_batch(3)

        assert [item.id for item in first] == ["item-0", "item-1", "item-2"]
        assert [item.id for item in second] == ["item-3", "item-4"]
        assert third == []

    @pytest.mark.asyncio
    async def test_zero_limit_claims_nothing(self, queue, test_session):
        await add_item(test_session, "a", utcnow())

        assert await queue.claim_batch(0) == []
        assert (await queue.get("a")).status == QueueStatus.PENDING

    @pytest.mark.asyncio
    async def test_storage_failure_claims_nothing(self):
        engine = create_async_engine("sqlite+aiosqlite:///:memory:")
        broken = NotificationQueue(async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False))

        assert await broken.claim_batch(10) == []

        await engine.dispose()


class TestConcurrentClaims:
    """Concurrent claims and transitions on the production SQLite engine."""

    @pytest_asyncio.fixture
    async def file_queue(self, file_session_factory):
        return NotificationQueue(file_session_factory)

    @pytest.mark.asyncio
    async def test_concurrent_claims_are_disjoint(self, file_queue, telegram_payload):
        for _ in range(20):
            assert await file_queue.enqueue("user-1", NotificationChannel.TELEGRAM, telegram_payload)

        batches = await asyncio.gather(*(file_queue.claim_batch(6) for _ in range(5)))

        claimed_ids = [item.id for batch in batches for item in batch]
        assert len(claimed_ids) == len(set(claimed_ids))
        assert len(claimed_ids) == 20
        stats = await file_queue.get_stats()
        assert stats.processing == 20
        assert stats.pending == 0

    @pytest.mark.asyncio
    async def test_concurrent_transitions_all_land(self, file_queue, telegram_payload):
        for _ in range(10):
            await file_queue.enqueue("user-1", NotificationChannel.TELEGRAM, telegram_payload)
        claimed = await file_queue.claim_batch(10)

        results = await asyncio.gather(*(
            file_queue.mark_completed(item.id) if i % 2 else file_queue.mark_failed(item.id, "boom")
            for i, item in enumerate(claimed)
        ))

        assert results == [True] * 10
        stats = await file_queue.get_stats()
        assert stats.processing == 0
        assert stats.completed == 5
        assert stats.failed == 5


class TestTerminalTransitions:
    """Tests for mark_completed / mark_failed."""

    @pytest.mark.asyncio
    async def test_mark_completed(self, queue, test_session):
        await add_item(test_session, "a", utcnow())
        await queue.claim_batch(1)

        assert await queue.mark_completed("a") is True
        assert (await queue.get("a")).status == QueueStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_mark_failed_records_error(self, queue, test_session):
        await add_item(test_session, "a", utcnow())
        await queue.claim_batch(1)

        assert await queue.mark_failed("a", "Telegram API error: chat not found") is True

        stored = await queue.get("a")
        assert stored.status == QueueStatus.FAILED
        assert stored.last_error == "Telegram API error: chat not found"

    @pytest.mark.asyncio
    async def test_mark_failed_truncates_long_errors(self, queue, test_session):
        await add_item(test_session, "a", utcnow())
        await queue.claim_batch(1)

        await queue.mark_failed("a", "x" * 5000)

        assert len((await queue.get("a")).last_error) == 1000

    @pytest.mark.asyncio
    async def test_second_transition_is_a_no_op(self, queue, test_session):
        await add_item(test_session, "a", utcnow())
        await queue.claim_batch(1)

        assert await queue.mark_completed("a") is True
        assert await queue.mark_completed("a") is False
        assert await queue.mark_failed("a", "late failure") is False

        stored = await queue.get("a")
        assert stored.status == QueueStatus.COMPLETED
        assert stored.last_error is None

    @pytest.mark.asyncio
    async def test_transition_from_pending_is_ignored(self, queue, test_session):
        await add_item(test_session, "a", utcnow())

        assert await queue.mark_completed("a") is False
        assert (await queue.get("a")).status == QueueStatus.PENDING

    @pytest.mark.asyncio
    async def test_unknown_item_is_ignored(self, queue):
        assert await queue.mark_failed("missing", "boom") is False


class TestCleanup:
    """Tests for cleanup_old_items."""

    @pytest.mark.asyncio
    async def test_deletes_only_old_terminal_items(self, queue, test_session):
        old = utcnow() - timedelta(days=10)
        recent = utcnow() - timedelta(days=1)
        await add_item(test_session, "old-completed", old, QueueStatus.COMPLETED)
        await add_item(test_session, "old-failed", old, QueueStatus.FAILED)
        await add_item(test_session, "old-pending", old, QueueStatus.PENDING)
        await add_item(test_session, "old-processing", old, QueueStatus.PROCESSING)
        await add_item(test_session, "recent-completed", recent, QueueStatus.COMPLETED)

        deleted = await queue.cleanup_old_items(7)

        assert deleted == 2
        assert await queue.get("old-completed") is None
        assert await queue.get("old-failed") is None
        assert (await queue.get("old-pending")).status == QueueStatus.PENDING
        assert (await queue.get("old-processing")).status == QueueStatus.PROCESSING
        assert (await queue.get("recent-completed")) is not None

    @pytest.mark.asyncio
    async def test_cleanup_with_nothing_to_delete(self, queue):
        assert await queue.cleanup_old_items(7) == 0


class TestStats:
    """Tests for get_stats."""

    @pytest.mark.asyncio
    async def test_counts_per_status(self, queue, test_session):
        now = utcnow()
        await add_item(test_session, "p1", now)
        await add_item(test_session, "p2", now)
        await add_item(test_session, "c1", now, QueueStatus.COMPLETED)
        await add_item(test_session, "f1", now, QueueStatus.FAILED)

        stats = await queue.get_stats()

        assert stats.pending == 2
        assert stats.completed == 1
        assert stats.failed == 1
        assert stats.processing == 0
        assert stats.total == 4


class TestListItems:
    """Tests for list_items."""

    @pytest.mark.asyncio
    async def test_lists_oldest_first(self, queue, test_session):
        now = utcnow()
        await add_item(test_session, "new", now)
        await add_item(test_session, "old", now - timedelta(hours=1))
        await add_item(test_session, "done", now - timedelta(minutes=30), QueueStatus.COMPLETED)

        items = await queue.list_items()

        assert [item.id for item in items] == ["old", "done", "new"]

    @pytest.mark.asyncio
    async def test_filters_by_status_and_limit(self, queue, test_session):
        now = utcnow()
        for i in range(4):
            await add_item(test_session, f"f{i}", now - timedelta(minutes=10 - i), QueueStatus.FAILED)
        await add_item(test_session, "p", now - timedelta(hours=1))

        items = await queue.list_items(status=QueueStatus.FAILED, limit=2)

        assert [item.id for item in items] == ["f0", "f1"]

    @pytest.mark.asyncio
    async def test_storage_failure_lists_nothing(self):
        engine = create_async_engine("sqlite+aiosqlite:///:memory:")
        broken = NotificationQueue(async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False))

        assert await broken.list_items() == []

        await engine.dispose()
