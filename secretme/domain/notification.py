"""
Notification queue domain model and schemas.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import Column, String, DateTime, Integer, JSON, Index, Enum as SQLEnum
from sqlalchemy.orm import declarative_base
from pydantic import BaseModel

from secretme.utils.time import utcnow

Base = declarative_base()


class NotificationChannel(str, Enum):
    """Delivery channels a notification can be routed to."""
    TELEGRAM = "telegram"
    WHATSAPP = "whatsapp"
    EMAIL = "email"


class QueueStatus(str, Enum):
    """Queue item status enumeration."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = (QueueStatus.COMPLETED, QueueStatus.FAILED)


class QueueItem(Base):
    """SQLAlchemy model for pending notification deliveries."""

    __tablename__ = "notification_queue"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    recipient_user_id = Column(String(36), nullable=False, index=True)
    message_id = Column(String(36), nullable=True)
    notification_type = Column(String(32), nullable=False, default="new_message")
    channel = Column(SQLEnum(NotificationChannel), nullable=False)
    payload = Column(JSON, nullable=False, default=dict)
    status = Column(SQLEnum(QueueStatus), nullable=False, default=QueueStatus.PENDING)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(String(1000), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_notification_queue_status_created", "status", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<QueueItem(id={self.id}, channel={self.channel}, status={self.status})>"


# Pydantic Schemas

class SendResult(BaseModel):
    """Outcome of handing one rendered message to a channel sender."""
    success: bool
    error: Optional[str] = None


class QueueItemResponse(BaseModel):
    """Schema for queue item response."""
    id: str
    recipient_user_id: str
    channel: NotificationChannel
    status: QueueStatus
    attempts: int
    payload: Dict[str, Any]
    last_error: Optional[str]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class QueueStats(BaseModel):
    """Counts of queue items per status."""
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    total: int = 0


class DispatchStatus(str, Enum):
    """What happened to a notification event."""
    SKIPPED = "skipped"
    ENQUEUED = "enqueued"
    FAILED = "failed"


class DispatchResult(BaseModel):
    """Result of routing one notification event."""
    status: DispatchStatus
    queue_item_id: Optional[str] = None
    reason: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status != DispatchStatus.FAILED
