"""
Notification endpoints: event trigger and interactive test sends.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from secretme.api.dependencies import get_dispatcher, require_cron_secret
from secretme.domain.exceptions import (
    ChannelNotConfiguredError,
    PremiumRequiredError,
    UserNotFoundError,
)
from secretme.domain.notification import DispatchStatus, NotificationChannel
from secretme.usecases.notification_service import NotificationDispatchService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/notifications")


class TriggerRequest(BaseModel):
    user_id: str = Field(..., min_length=1, alias="userId")
    message_id: str = Field(..., min_length=1, alias="messageId")
    type: str = Field(..., min_length=1)

    class Config:
        populate_by_name = True


class TestRequest(BaseModel):
    user_id: str = Field(..., min_length=1, alias="userId")
    channel: NotificationChannel

    class Config:
        populate_by_name = True


@router.post("/trigger", dependencies=[Depends(require_cron_secret)])
async def trigger_notification(
    body: TriggerRequest,
    dispatcher: NotificationDispatchService = Depends(get_dispatcher),
):
    """
    Route a notification event.

    `new_message` notifies the message's recipient and `reply` its signed-in
    sender; other event types are accepted and ignored.
    """
    if body.type == "new_message":
        result = await dispatcher.notify_new_message(body.user_id, body.message_id)
    elif body.type == "reply":
        result = await dispatcher.notify_reply(body.message_id)
    else:
        logger.info(f"Skipping unsupported notification type: {body.type}")
        return {"success": True, "status": DispatchStatus.SKIPPED.value, "message": "Unsupported notification type"}

    if not result.success:
        raise HTTPException(status_code=500, detail=result.reason or "Notification failed")

    return {
        "success": True,
        "status": result.status.value,
        "queueId": result.queue_item_id,
        "message": result.reason,
    }


@router.post("/test")
async def send_test_notification(
    body: TestRequest,
    dispatcher: NotificationDispatchService = Depends(get_dispatcher),
):
    """
    Send a test notification to the caller's own channel right away.

    Sender errors are returned verbatim to the requester.
    """
    try:
        result = await dispatcher.send_test_notification(body.user_id, body.channel)
    except UserNotFoundError:
        raise HTTPException(status_code=404, detail="User not found")
    except PremiumRequiredError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except ChannelNotConfiguredError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if not result.success:
        return JSONResponse(status_code=502, content={"success": False, "error": result.error})

    return {"success": True, "message": f"Test {body.channel.value} notification sent"}
