"""
User, notification preference and message models.

These tables belong to the wider application; the notification core only
reads them, except for messages stored on submission.
"""

import uuid
from typing import Optional

from sqlalchemy import Column, String, DateTime, Boolean, ForeignKey, Text
from pydantic import BaseModel, Field, field_validator

from secretme.domain.notification import Base
from secretme.utils.time import utcnow


class User(Base):
    """SQLAlchemy model for profile owners."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    username = Column(String(64), nullable=True, unique=True)
    name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True)
    is_premium = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow)

    @property
    def display_name(self) -> str:
        return self.name or self.username or "there"

    def __repr__(self) -> str:
        return f"<User(id={self.id}, username={self.username}, premium={self.is_premium})>"


class NotificationSettings(Base):
    """Per-user notification preferences."""

    __tablename__ = "notification_settings"

    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    enabled = Column(Boolean, nullable=False, default=False)
    channel = Column(String(16), nullable=False, default="none")  # telegram | whatsapp | email | none
    telegram_id = Column(String(64), nullable=True)
    whatsapp_number = Column(String(32), nullable=True)
    notify_new_messages = Column(Boolean, nullable=False, default=True)
    notify_replies = Column(Boolean, nullable=False, default=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<NotificationSettings(user={self.user_id}, channel={self.channel}, enabled={self.enabled})>"


class Message(Base):
    """Anonymous message sent to a profile."""

    __tablename__ = "messages"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    recipient_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    sender_user_id = Column(String(36), nullable=True)  # set when a signed-in user sends
    sender_ip = Column(String(64), nullable=True)
    content = Column(Text, nullable=False)
    reply = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    def __repr__(self) -> str:
        return f"<Message(id={self.id}, recipient={self.recipient_id})>"


# Pydantic Schemas

class MessageCreate(BaseModel):
    """Schema for submitting an anonymous message."""
    recipient_id: str = Field(..., min_length=1, alias="recipientId")
    content: str = Field(..., min_length=1, max_length=1000)
    sender_user_id: Optional[str] = Field(None, alias="senderUserId")

    @field_validator("content")
    @classmethod
    def validate_content(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Message content must not be blank")
        return v

    class Config:
        populate_by_name = True
