"""
Rate limiting domain model and schemas.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Column, String, DateTime, Integer, Boolean, UniqueConstraint
from pydantic import BaseModel, Field

from secretme.domain.notification import Base
from secretme.utils.time import utcnow


class RateLimitRecord(Base):
    """Attempt counters for one (ip, recipient) pair."""

    __tablename__ = "rate_limit_records"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    ip_address = Column(String(64), nullable=False)
    recipient_user_id = Column(String(36), nullable=False)
    sender_user_id = Column(String(36), nullable=True)
    attempt_count = Column(Integer, nullable=False, default=0)
    first_attempt_at = Column(DateTime, nullable=False, default=utcnow)
    last_attempt_at = Column(DateTime, nullable=False, default=utcnow)
    hour_window_started_at = Column(DateTime, nullable=False, default=utcnow)
    hour_attempt_count = Column(Integer, nullable=False, default=0)
    is_blocked = Column(Boolean, nullable=False, default=False)
    # Optimistic lock: a concurrent update to the same record fails the flush
    version = Column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint("ip_address", "recipient_user_id", name="uq_rate_limit_ip_recipient"),
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<RateLimitRecord(ip={self.ip_address}, recipient={self.recipient_user_id}, "
            f"count={self.attempt_count}, blocked={self.is_blocked})>"
        )


class RateLimitPolicy(Base):
    """Append-only history of rate limit policies; the newest row is current."""

    __tablename__ = "rate_limit_policies"

    id = Column(Integer, primary_key=True, autoincrement=True)
    max_messages_per_day = Column(Integer, nullable=False)
    max_messages_per_hour = Column(Integer, nullable=False)
    block_duration_hours = Column(Integer, nullable=False)
    updated_by = Column(String(255), nullable=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return (
            f"<RateLimitPolicy(day={self.max_messages_per_day}, hour={self.max_messages_per_hour}, "
            f"block={self.block_duration_hours}h)>"
        )


class BlockedIp(Base):
    """IP addresses reported for abuse."""

    __tablename__ = "blocked_ips"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ip_address = Column(String(64), nullable=False, unique=True)
    reason = Column(String(500), nullable=True)
    is_permanent = Column(Boolean, nullable=False, default=False)
    blocked_at = Column(DateTime, nullable=False, default=utcnow)
    blocked_until = Column(DateTime, nullable=True)


# Pydantic Schemas

class PolicySnapshot(BaseModel):
    """Immutable view of the current policy, safe to share from the cache."""
    max_messages_per_day: int
    max_messages_per_hour: int
    block_duration_hours: int
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
        frozen = True


DEFAULT_POLICY = PolicySnapshot(
    max_messages_per_day=5,
    max_messages_per_hour=2,
    block_duration_hours=24,
)


class PolicyUpdate(BaseModel):
    """Schema for saving a new policy version."""
    max_messages_per_day: int = Field(..., ge=1, alias="maxMessagesPerDay")
    max_messages_per_hour: int = Field(..., ge=1, alias="maxMessagesPerHour")
    block_duration_hours: int = Field(..., ge=1, alias="blockDurationHours")

    class Config:
        populate_by_name = True


class RateLimitDecision(BaseModel):
    """Admission decision for one message submission."""
    allowed: bool
    retry_after: Optional[datetime] = None
    reason: Optional[str] = None


class BlockedIpResponse(BaseModel):
    """Schema for a blocked IP entry."""
    id: int
    ip_address: str
    reason: Optional[str]
    is_permanent: bool
    blocked_at: datetime
    blocked_until: Optional[datetime]

    class Config:
        from_attributes = True
