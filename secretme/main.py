"""
SecretMe notification service - Main Application Entry Point

Rate-limited anonymous message intake and a queued, cron-driven
notification pipeline (Telegram, WhatsApp, email) using FastAPI and
SQLAlchemy.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from secretme.api.messages import router as messages_router
from secretme.api.notifications import router as notifications_router
from secretme.api.queue import router as queue_router
from secretme.api.rate_limit import router as rate_limit_router
from secretme.config.settings import get_settings
from secretme.infrastructure.database import async_session_factory, dispose_database, init_database
from secretme.infrastructure.scheduler import start_scheduler, stop_scheduler
from secretme.infrastructure.senders import build_channel_senders
from secretme.usecases.notification_queue import NotificationQueue
from secretme.usecases.notification_service import NotificationDispatchService
from secretme.usecases.queue_processor import QueueProcessor
from secretme.usecases.rate_limit_guard import PolicyCache, RateLimitGuard

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)

logger = logging.getLogger(__name__)
settings = get_settings()


def build_services(app: FastAPI) -> None:
    """Create the per-process service instances and attach them to app state."""
    senders = build_channel_senders(settings)
    queue = NotificationQueue(async_session_factory)

    app.state.queue = queue
    app.state.processor = QueueProcessor(
        queue,
        senders,
        send_timeout=settings.channel_timeout_seconds,
        max_concurrency=settings.queue_concurrency,
    )
    app.state.guard = RateLimitGuard(
        async_session_factory,
        PolicyCache(ttl_seconds=settings.rate_limit_cache_ttl_seconds),
    )
    app.state.dispatcher = NotificationDispatchService(
        async_session_factory,
        queue,
        senders,
        app_url=settings.app_url,
        send_timeout=settings.channel_timeout_seconds,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    # Startup
    logger.info("Starting SecretMe notification service...")

    # Initialize database
    logger.info("Initializing database...")
    await init_database()
    logger.info("Database initialized")

    build_services(app)

    if settings.enable_internal_scheduler:
        await start_scheduler(
            app.state.processor,
            app.state.queue,
            interval_seconds=settings.queue_process_interval_seconds,
            batch_size=settings.queue_batch_size,
            days_to_keep=settings.queue_days_to_keep,
        )
    else:
        logger.info("Internal scheduler disabled; waiting for external queue triggers")

    if not settings.cron_secret:
        logger.warning("CRON_SECRET is not set; queue trigger endpoints will reject all calls")

    logger.info("Application startup complete!")

    yield

    # Shutdown
    logger.info("Shutting down...")
    await stop_scheduler()
    await dispose_database()
    logger.info("Application shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="SecretMe Notification Service",
    description="Anonymous message intake with rate limiting and queued notifications",
    version="1.0.0",
    lifespan=lifespan
)

# CORS for the web front end
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.app_url],
    allow_credentials=True,
    allow_methods=["POST", "GET"],
    allow_headers=["*"],
)

# Register routers
app.include_router(messages_router, tags=["Messages"])
app.include_router(rate_limit_router, tags=["Rate limit"])
app.include_router(notifications_router, tags=["Notifications"])
app.include_router(queue_router, tags=["Queue"])


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "name": "SecretMe Notification Service",
        "version": "1.0.0",
        "status": "running",
        "endpoints": {
            "messages": "/messages",
            "queue": "/queue/process",
            "health": "/health"
        }
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "secretme-notifications"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "secretme.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug
    )
