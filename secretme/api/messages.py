"""
Anonymous message submission.
"""

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, Request

from secretme.api.dependencies import get_client_ip, get_dispatcher, get_guard
from secretme.api.rate_limit import rate_limited_response
from secretme.domain.user import Message, MessageCreate, User
from secretme.infrastructure.database import DatabaseSession
from secretme.usecases.notification_service import NotificationDispatchService
from secretme.usecases.rate_limit_guard import RateLimitGuard

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/messages", status_code=201)
async def submit_message(
    body: MessageCreate,
    request: Request,
    guard: RateLimitGuard = Depends(get_guard),
    dispatcher: NotificationDispatchService = Depends(get_dispatcher),
):
    """
    Accept an anonymous message for a profile.

    The rate limit is checked before anything is stored; the recipient is
    notified through the queue when eligible.
    """
    ip = get_client_ip(request)

    decision = await guard.check_and_record(ip, body.recipient_id, body.sender_user_id)
    if not decision.allowed:
        return rate_limited_response(decision)

    async with DatabaseSession() as session:
        recipient = await session.get(User, body.recipient_id)
        if recipient is None:
            raise HTTPException(status_code=404, detail="Recipient not found")

        message = Message(
            id=str(uuid.uuid4()),
            recipient_id=recipient.id,
            # Set by the session layer in front of this service, not by the visitor
            sender_user_id=body.sender_user_id,
            sender_ip=ip,
            content=body.content,
        )
        session.add(message)
        await session.commit()

    logger.info(f"Stored message {message.id} for user {recipient.id}")

    result = await dispatcher.notify_new_message(recipient.id, message.id)
    if not result.success:
        # The message is stored; a missed notification is only logged
        logger.error(f"Notification for message {message.id} failed: {result.reason}")

    return {"success": True, "id": message.id, "notification": result.status.value}
