"""
Admission control for anonymous message submission.
"""

import logging
import time
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from sqlalchemy import select, delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import before_sleep_log, retry, retry_if_exception_type, stop_after_attempt, wait_random

from secretme.domain.rate_limit import (
    BlockedIp,
    DEFAULT_POLICY,
    PolicySnapshot,
    RateLimitDecision,
    RateLimitPolicy,
    RateLimitRecord,
)
from secretme.utils.time import utcnow

logger = logging.getLogger(__name__)

UNKNOWN_IP = "unknown"
DAY_WINDOW = timedelta(days=1)
HOUR_WINDOW = timedelta(hours=1)
REPORT_BLOCK_DURATION = timedelta(hours=24)
RECORD_CONFLICT_ATTEMPTS = 10


class PolicyCache:
    """
    Process-local TTL cache for the current rate limit policy.

    The cached value is an immutable snapshot that is swapped as a whole,
    so readers never observe a half-updated policy.
    """

    def __init__(self, ttl_seconds: float = 300):
        self.ttl_seconds = ttl_seconds
        self._cached: Optional[Tuple[PolicySnapshot, float]] = None
        self._last_known: Optional[PolicySnapshot] = None

    async def get(self, session: AsyncSession) -> PolicySnapshot:
        """
        Return the current policy, reading the database at most once per TTL.

        Read failures fall back to the last known policy, then to defaults.
        """
        cached = self._cached
        if cached is not None and time.monotonic() < cached[1]:
            return cached[0]

        try:
            result = await session.execute(
                select(RateLimitPolicy)
                .order_by(RateLimitPolicy.updated_at.desc(), RateLimitPolicy.id.desc())
                .limit(1)
            )
            row = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.exception(f"Error fetching rate limit policy: {e}")
            await session.rollback()
            return self._last_known or DEFAULT_POLICY

        policy = PolicySnapshot.model_validate(row) if row is not None else DEFAULT_POLICY
        self._cached = (policy, time.monotonic() + self.ttl_seconds)
        self._last_known = policy
        return policy

    def invalidate(self) -> None:
        """Drop the cached policy so the next read goes to the database."""
        self._cached = None


class RateLimitGuard:
    """Decides whether a sender may send another message to a recipient."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        policy_cache: Optional[PolicyCache] = None,
    ):
        self.session_factory = session_factory
        self.policy_cache = policy_cache or PolicyCache()

    def invalidate_config_cache(self) -> None:
        self.policy_cache.invalidate()

    async def get_policy(self) -> PolicySnapshot:
        """Current policy, via the cache."""
        async with self.session_factory() as session:
            return await self.policy_cache.get(session)

    async def save_policy(
        self,
        max_messages_per_day: int,
        max_messages_per_hour: int,
        block_duration_hours: int,
        updated_by: Optional[str] = None,
    ) -> PolicySnapshot:
        """
        Append a new policy version and invalidate the cache.

        Raises:
            ValueError: if any threshold is not positive
            SQLAlchemyError: if the policy could not be stored
        """
        if min(max_messages_per_day, max_messages_per_hour, block_duration_hours) < 1:
            raise ValueError("Values must be greater than 0")

        policy = RateLimitPolicy(
            max_messages_per_day=max_messages_per_day,
            max_messages_per_hour=max_messages_per_hour,
            block_duration_hours=block_duration_hours,
            updated_by=updated_by,
            updated_at=utcnow(),
        )
        async with self.session_factory() as session:
            session.add(policy)
            await session.commit()

        self.invalidate_config_cache()
        logger.info(
            f"Saved rate limit policy: {max_messages_per_day}/day, "
            f"{max_messages_per_hour}/hour, {block_duration_hours}h block"
        )
        return PolicySnapshot.model_validate(policy)

    async def check_and_record(
        self,
        ip: Optional[str],
        recipient_user_id: str,
        sender_user_id: Optional[str] = None,
    ) -> RateLimitDecision:
        """
        Count an attempt by `ip` to message `recipient_user_id` and decide.

        Every call is counted, allowed or not. Concurrent attempts on the
        same record are retried against the fresh row; storage failures
        allow the request.
        """
        ip = ip or UNKNOWN_IP
        now = utcnow()

        try:
            decision = await self._record_attempt(ip, recipient_user_id, sender_user_id, now)
        except SQLAlchemyError as e:
            logger.exception(f"Error recording rate limit attempt for {ip} -> {recipient_user_id}: {e}")
            return RateLimitDecision(allowed=True)

        if not decision.allowed:
            logger.warning(f"Rate limit hit for {ip} -> {recipient_user_id}: {decision.reason}")
        return decision

    @retry(
        stop=stop_after_attempt(RECORD_CONFLICT_ATTEMPTS),
        wait=wait_random(min=0.01, max=0.1),
        retry=retry_if_exception_type((IntegrityError, StaleDataError)),
        before_sleep=before_sleep_log(logger, logging.DEBUG),
        reraise=True
    )
    async def _record_attempt(
        self,
        ip: str,
        recipient_user_id: str,
        sender_user_id: Optional[str],
        now: datetime,
    ) -> RateLimitDecision:
        """
        One read-decide-write pass in its own session.

        A concurrent first insert raises IntegrityError and a concurrent
        update raises StaleDataError (version mismatch); both are retried.
        """
        async with self.session_factory() as session:
            policy = await self.policy_cache.get(session)

            blocked = await self._check_blocked_ip(session, ip, now)
            if blocked is not None:
                return blocked

            decision = await self._count_attempt(session, policy, ip, recipient_user_id, sender_user_id, now)
            await session.commit()
            return decision

    async def _check_blocked_ip(
        self, session: AsyncSession, ip: str, now: datetime
    ) -> Optional[RateLimitDecision]:
        result = await session.execute(select(BlockedIp).where(BlockedIp.ip_address == ip))
        block = result.scalar_one_or_none()
        if block is None:
            return None

        if block.is_permanent:
            return RateLimitDecision(allowed=False, reason="This IP address has been permanently blocked")

        if block.blocked_until is not None and block.blocked_until > now:
            return RateLimitDecision(
                allowed=False,
                retry_after=block.blocked_until,
                reason="This IP address is temporarily blocked",
            )

        # Block expired
        await session.execute(delete(BlockedIp).where(BlockedIp.id == block.id))
        await session.commit()
        return None

    async def _count_attempt(
        self,
        session: AsyncSession,
        policy: PolicySnapshot,
        ip: str,
        recipient_user_id: str,
        sender_user_id: Optional[str],
        now: datetime,
    ) -> RateLimitDecision:
        result = await session.execute(
            select(RateLimitRecord).where(
                RateLimitRecord.ip_address == ip,
                RateLimitRecord.recipient_user_id == recipient_user_id,
            )
        )
        record = result.scalar_one_or_none()

        if record is None:
            record = RateLimitRecord(
                ip_address=ip,
                recipient_user_id=recipient_user_id,
                sender_user_id=sender_user_id,
            )
            self._reset_windows(record, now)
            session.add(record)
            return self._evaluate(record, policy, now)

        block_duration = timedelta(hours=policy.block_duration_hours)

        if record.is_blocked:
            block_end = record.last_attempt_at + block_duration
            if now < block_end:
                record.attempt_count += 1
                return RateLimitDecision(
                    allowed=False,
                    retry_after=block_end,
                    reason="Message limit reached for this recipient",
                )
            record.is_blocked = False
            self._reset_windows(record, now)
            return self._evaluate(record, policy, now)

        if now - record.first_attempt_at >= DAY_WINDOW:
            self._reset_windows(record, now)
            return self._evaluate(record, policy, now)

        if now - record.hour_window_started_at >= HOUR_WINDOW:
            record.hour_window_started_at = now
            record.hour_attempt_count = 0

        record.attempt_count += 1
        record.hour_attempt_count += 1
        record.last_attempt_at = now
        return self._evaluate(record, policy, now)

    @staticmethod
    def _reset_windows(record: RateLimitRecord, now: datetime) -> None:
        """Start fresh day and hour windows with this attempt counted."""
        record.attempt_count = 1
        record.hour_attempt_count = 1
        record.first_attempt_at = now
        record.hour_window_started_at = now
        record.last_attempt_at = now

    @staticmethod
    def _evaluate(record: RateLimitRecord, policy: PolicySnapshot, now: datetime) -> RateLimitDecision:
        if record.attempt_count > policy.max_messages_per_day:
            reason = f"Limit of {policy.max_messages_per_day} messages per day reached for this recipient"
        elif record.hour_attempt_count > policy.max_messages_per_hour:
            reason = f"Limit of {policy.max_messages_per_hour} messages per hour reached for this recipient"
        else:
            return RateLimitDecision(allowed=True)

        record.is_blocked = True
        record.last_attempt_at = now
        return RateLimitDecision(
            allowed=False,
            retry_after=now + timedelta(hours=policy.block_duration_hours),
            reason=reason,
        )

    async def report_ip(self, ip: str, reason: Optional[str] = None, is_permanent: bool = False) -> BlockedIp:
        """
        Block an IP address reported for abuse.

        Temporary blocks last 24 hours; reporting an already blocked IP
        refreshes the block.
        """
        now = utcnow()
        blocked_until = None if is_permanent else now + REPORT_BLOCK_DURATION

        async with self.session_factory() as session:
            result = await session.execute(select(BlockedIp).where(BlockedIp.ip_address == ip))
            block = result.scalar_one_or_none()
            if block is None:
                block = BlockedIp(ip_address=ip, reason=reason)
                session.add(block)
            elif reason:
                block.reason = reason
            block.blocked_at = now
            block.blocked_until = blocked_until
            block.is_permanent = is_permanent
            await session.commit()

        logger.info(f"Blocked IP {ip} ({'permanent' if is_permanent else 'until ' + str(blocked_until)})")
        return block

    async def list_blocked_ips(self) -> List[BlockedIp]:
        """Blocked IP addresses, most recently blocked first."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(BlockedIp).order_by(BlockedIp.blocked_at.desc(), BlockedIp.id.desc())
            )
            return list(result.scalars().all())

    async def unblock_ip(self, block_id: int) -> bool:
        """
        Lift a block before it expires.

        Returns:
            False if no such block exists
        """
        async with self.session_factory() as session:
            result = await session.execute(delete(BlockedIp).where(BlockedIp.id == block_id))
            deleted = result.rowcount
            await session.commit()

        if not deleted:
            return False
        logger.info(f"Unblocked IP block {block_id}")
        return True
