"""
Optional APScheduler trigger for queue processing.

Deployments with an external cron call POST /queue/process instead and
leave ENABLE_INTERNAL_SCHEDULER off.
"""

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from secretme.usecases.notification_queue import NotificationQueue
from secretme.usecases.queue_processor import QueueProcessor

logger = logging.getLogger(__name__)

PROCESS_JOB_ID = "process_notification_queue"
CLEANUP_JOB_ID = "cleanup_notification_queue"

# Global scheduler instance
scheduler: Optional[AsyncIOScheduler] = None


def get_scheduler() -> AsyncIOScheduler:
    """Get or create the scheduler instance."""
    global scheduler

    if scheduler is None:
        scheduler = AsyncIOScheduler(timezone="UTC")

    return scheduler


async def run_queue_processing(processor: QueueProcessor, batch_size: int) -> None:
    """Scheduled job body: drain one batch."""
    try:
        await processor.process_queue(batch_size)
    except Exception as e:
        logger.exception(f"Scheduled queue processing failed: {e}")


async def run_queue_cleanup(queue: NotificationQueue, days_to_keep: int) -> None:
    """Scheduled job body: remove old terminal items."""
    await queue.cleanup_old_items(days_to_keep)


async def start_scheduler(
    processor: QueueProcessor,
    queue: NotificationQueue,
    interval_seconds: int,
    batch_size: int,
    days_to_keep: int,
) -> None:
    """Register the queue jobs and start the scheduler."""
    sched = get_scheduler()

    sched.add_job(
        run_queue_processing,
        trigger=IntervalTrigger(seconds=interval_seconds),
        id=PROCESS_JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        kwargs={"processor": processor, "batch_size": batch_size},
    )
    sched.add_job(
        run_queue_cleanup,
        trigger=IntervalTrigger(hours=24),
        id=CLEANUP_JOB_ID,
        replace_existing=True,
        kwargs={"queue": queue, "days_to_keep": days_to_keep},
    )

    if not sched.running:
        sched.start()
        logger.info(f"Scheduler started, processing the queue every {interval_seconds}s")


async def stop_scheduler() -> None:
    """Stop the scheduler gracefully."""
    global scheduler
    if scheduler and scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Scheduler stopped")
    scheduler = None
