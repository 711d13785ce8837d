"""
Rate limit endpoints: admission check, admin policy and abuse reports.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError

from secretme.api.dependencies import get_client_ip, get_guard, require_admin
from secretme.domain.rate_limit import BlockedIpResponse, PolicySnapshot, PolicyUpdate, RateLimitDecision
from secretme.usecases.rate_limit_guard import RateLimitGuard
from secretme.utils.time import isoformat_utc, seconds_until

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/rate-limit")


class CheckRequest(BaseModel):
    recipient_id: str = Field(..., min_length=1, alias="recipientId")

    class Config:
        populate_by_name = True


class ReportRequest(BaseModel):
    ip_address: str = Field(..., min_length=1, alias="ipAddress")
    reason: Optional[str] = Field(None, max_length=500)
    is_permanent: bool = Field(False, alias="isPermanent")

    class Config:
        populate_by_name = True


def rate_limited_response(decision: RateLimitDecision) -> JSONResponse:
    """429 response for a rejected submission."""
    headers = {}
    if decision.retry_after is not None:
        headers["Retry-After"] = str(seconds_until(decision.retry_after))
    return JSONResponse(
        status_code=429,
        content={
            "allowed": False,
            "reason": decision.reason,
            "retryAfter": isoformat_utc(decision.retry_after),
        },
        headers=headers,
    )


@router.post("/check")
async def check_rate_limit(
    body: CheckRequest,
    request: Request,
    guard: RateLimitGuard = Depends(get_guard),
):
    """Count a submission attempt from the caller's IP and say whether it may proceed."""
    decision = await guard.check_and_record(get_client_ip(request), body.recipient_id)
    if not decision.allowed:
        return rate_limited_response(decision)
    return {"allowed": True}


@router.get("/policy", response_model=PolicySnapshot, dependencies=[Depends(require_admin)])
async def get_policy(guard: RateLimitGuard = Depends(get_guard)):
    """Current rate limit policy."""
    return await guard.get_policy()


@router.post("/policy", dependencies=[Depends(require_admin)])
async def save_policy(body: PolicyUpdate, guard: RateLimitGuard = Depends(get_guard)):
    """Store a new policy version; takes effect immediately in this process."""
    try:
        policy = await guard.save_policy(
            max_messages_per_day=body.max_messages_per_day,
            max_messages_per_hour=body.max_messages_per_hour,
            block_duration_hours=body.block_duration_hours,
            updated_by="admin",
        )
    except SQLAlchemyError as e:
        logger.exception(f"Error saving rate limit policy: {e}")
        raise HTTPException(status_code=500, detail="Failed to save configuration")

    return {
        "success": True,
        "message": "Rate limit configuration saved successfully",
        "data": policy.model_dump(mode="json"),
    }


@router.post("/report", dependencies=[Depends(require_admin)])
async def report_ip(body: ReportRequest, guard: RateLimitGuard = Depends(get_guard)):
    """Block an IP address reported for abuse."""
    try:
        await guard.report_ip(body.ip_address, body.reason, body.is_permanent)
    except SQLAlchemyError as e:
        logger.exception(f"Error blocking IP {body.ip_address}: {e}")
        raise HTTPException(status_code=500, detail="Failed to block IP address")
    return {"success": True}


@router.get("/blocked-ips", response_model=List[BlockedIpResponse], dependencies=[Depends(require_admin)])
async def list_blocked_ips(guard: RateLimitGuard = Depends(get_guard)):
    """Blocked IP addresses, most recently blocked first."""
    return await guard.list_blocked_ips()


@router.delete("/blocked-ips/{block_id}", dependencies=[Depends(require_admin)])
async def unblock_ip(block_id: int, guard: RateLimitGuard = Depends(get_guard)):
    """Lift a block before it expires."""
    try:
        removed = await guard.unblock_ip(block_id)
    except SQLAlchemyError as e:
        logger.exception(f"Error unblocking IP block {block_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to unblock IP address")

    if not removed:
        raise HTTPException(status_code=404, detail="Blocked IP not found")
    return {"success": True}
