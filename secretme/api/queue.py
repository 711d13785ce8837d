"""
Queue trigger endpoints for the external scheduler.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from secretme.api.dependencies import get_processor, get_queue, require_admin, require_cron_secret
from secretme.domain.notification import QueueItemResponse, QueueStats, QueueStatus
from secretme.usecases.notification_queue import NotificationQueue
from secretme.usecases.queue_processor import QueueProcessor

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/queue")


class ProcessRequest(BaseModel):
    batch_size: int = Field(10, ge=1, le=100, alias="batchSize")
    cleanup: bool = False
    days_to_keep: int = Field(7, ge=1, alias="daysToKeep")

    class Config:
        populate_by_name = True


class CleanupRequest(BaseModel):
    days_to_keep: int = Field(7, ge=1, alias="daysToKeep")

    class Config:
        populate_by_name = True


@router.post("/process", dependencies=[Depends(require_cron_secret)])
async def process_queue(
    body: Optional[ProcessRequest] = None,
    processor: QueueProcessor = Depends(get_processor),
    queue: NotificationQueue = Depends(get_queue),
):
    """
    Drain one batch of pending notifications.

    With `cleanup: true` the call only removes old completed/failed items.
    """
    body = body or ProcessRequest()

    if body.cleanup:
        cleaned = await queue.cleanup_old_items(body.days_to_keep)
        return {"success": True, "cleanedCount": cleaned}

    processed = await processor.process_queue(body.batch_size)
    return {"success": True, "processedCount": processed}


@router.post("/cleanup", dependencies=[Depends(require_cron_secret)])
async def cleanup_queue(
    body: Optional[CleanupRequest] = None,
    queue: NotificationQueue = Depends(get_queue),
):
    """Remove completed/failed items older than `daysToKeep` days."""
    body = body or CleanupRequest()
    cleaned = await queue.cleanup_old_items(body.days_to_keep)
    return {"success": True, "cleanedCount": cleaned}


@router.get("/stats", response_model=QueueStats, dependencies=[Depends(require_admin)])
async def queue_stats(queue: NotificationQueue = Depends(get_queue)):
    """Queue counts per status for the admin monitor."""
    return await queue.get_stats()


@router.get("/items", response_model=List[QueueItemResponse], dependencies=[Depends(require_admin)])
async def list_queue_items(
    status: Optional[QueueStatus] = None,
    limit: int = Query(50, ge=1, le=200),
    queue: NotificationQueue = Depends(get_queue),
):
    """Queue items for the admin monitor, oldest first."""
    return await queue.list_items(status=status, limit=limit)


@router.get("/items/{item_id}", response_model=QueueItemResponse, dependencies=[Depends(require_admin)])
async def get_queue_item(item_id: str, queue: NotificationQueue = Depends(get_queue)):
    """Inspect one queue item, including its last delivery error."""
    item = await queue.get(item_id)
    if item is None:
        raise HTTPException(status_code=404, detail="Queue item not found")
    return item
