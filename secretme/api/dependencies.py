"""
Shared request dependencies: services from app state, auth and client IP.
"""

import logging
import secrets
from typing import Optional

from fastapi import Depends, HTTPException, Request

from secretme.config.settings import Settings, get_settings
from secretme.usecases.notification_queue import NotificationQueue
from secretme.usecases.notification_service import NotificationDispatchService
from secretme.usecases.queue_processor import QueueProcessor
from secretme.usecases.rate_limit_guard import RateLimitGuard, UNKNOWN_IP

logger = logging.getLogger(__name__)


def get_queue(request: Request) -> NotificationQueue:
    return request.app.state.queue


def get_processor(request: Request) -> QueueProcessor:
    return request.app.state.processor


def get_guard(request: Request) -> RateLimitGuard:
    return request.app.state.guard


def get_dispatcher(request: Request) -> NotificationDispatchService:
    return request.app.state.dispatcher


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


def _check_bearer(request: Request, expected: Optional[str], name: str) -> None:
    if not expected:
        logger.error(f"{name} is not set; rejecting request to {request.url.path}")
        raise HTTPException(status_code=500, detail=f"Server configuration error: {name} not set")

    token = _bearer_token(request)
    if token is None or not secrets.compare_digest(token.encode(), expected.encode()):
        logger.warning(f"Unauthorized request to {request.url.path}")
        raise HTTPException(status_code=401, detail="Unauthorized")


def require_cron_secret(request: Request, settings: Settings = Depends(get_settings)) -> None:
    """Authorize scheduler and internal trigger calls."""
    _check_bearer(request, settings.cron_secret, "CRON_SECRET")


def require_admin(request: Request, settings: Settings = Depends(get_settings)) -> None:
    """Authorize admin calls."""
    _check_bearer(request, settings.admin_api_token, "ADMIN_API_TOKEN")


def get_client_ip(request: Request) -> str:
    """
    Best-effort client IP.

    Uses the first X-Forwarded-For entry, then X-Real-IP, then the socket
    peer, then "unknown".
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    if request.client and request.client.host:
        return request.client.host

    return UNKNOWN_IP
