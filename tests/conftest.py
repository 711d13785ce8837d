"""
Pytest configuration and fixtures for the SecretMe notification service tests.
"""

from typing import AsyncGenerator
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from secretme.domain.notification import Base, NotificationChannel, SendResult
from secretme.domain.rate_limit import RateLimitRecord  # noqa: F401 - needed for table creation
from secretme.domain.user import Message, NotificationSettings, User
from secretme.infrastructure.database import build_engine
from secretme.usecases.notification_queue import NotificationQueue


# Use a separate in-memory SQLite database for testing
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture
async def test_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def file_session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """
    Session factory on a SQLite file built the way production builds it.

    Unlike the in-memory engine, every session gets its own connection,
    so concurrent tasks really do contend for the database.
    """
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'secretme.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine."""
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture
async def test_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def queue(session_factory) -> NotificationQueue:
    """Notification queue on the test database."""
    return NotificationQueue(session_factory)


@pytest_asyncio.fixture
async def premium_user(test_session) -> User:
    """Premium user with Telegram notifications enabled."""
    user = User(
        id="user-premium",
        username="alice",
        name="Alice",
        email="alice@example.com",
        is_premium=True,
    )
    test_session.add(user)
    test_session.add(NotificationSettings(
        user_id=user.id,
        enabled=True,
        channel="telegram",
        telegram_id="123456789",
        whatsapp_number="081234567890",
        notify_new_messages=True,
        notify_replies=True,
    ))
    await test_session.commit()
    return user


@pytest_asyncio.fixture
async def free_user(test_session) -> User:
    """Non-premium user who has nevertheless configured Telegram."""
    user = User(id="user-free", username="bob", name="Bob", email="bob@example.com", is_premium=False)
    test_session.add(user)
    test_session.add(NotificationSettings(
        user_id=user.id,
        enabled=True,
        channel="telegram",
        telegram_id="987654321",
    ))
    await test_session.commit()
    return user


@pytest_asyncio.fixture
async def sample_message(test_session, premium_user) -> Message:
    """A message sent to the premium user."""
    message = Message(
        id="message-1",
        recipient_id=premium_user.id,
        content="Hey, I have always wanted to tell you that your playlist is amazing!",
    )
    test_session.add(message)
    await test_session.commit()
    return message


def make_sender(result: SendResult = None) -> AsyncMock:
    """Channel sender double whose send() returns `result`."""
    sender = AsyncMock()
    sender.send.return_value = result or SendResult(success=True)
    return sender


@pytest.fixture
def mock_senders():
    """One successful sender double per channel."""
    return {channel: make_sender() for channel in NotificationChannel}


@pytest.fixture
def telegram_payload():
    """Queue payload for a Telegram new-message notification."""
    return {
        "template": "new_message",
        "destination": "123456789",
        "name": "Alice",
        "preview": "Hello there",
        "url": "http://localhost:3000/alice",
    }
