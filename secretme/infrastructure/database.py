"""
Database setup and session management.
"""

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from secretme.config.settings import get_settings
from secretme.domain.notification import Base
from secretme.domain.rate_limit import RateLimitRecord  # noqa: F401 - needed for table creation
from secretme.domain.user import User  # noqa: F401 - needed for table creation

settings = get_settings()

# Seconds a connection waits for the SQLite write lock
SQLITE_BUSY_TIMEOUT = 30


def _begin_immediate(engine: AsyncEngine) -> None:
    """
    Start every SQLite transaction with BEGIN IMMEDIATE.

    Each transaction takes the write lock up front and waits for it,
    so concurrent sessions are serialised instead of failing with
    "database is locked" when they upgrade a read lock.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        # Disable the driver's own implicit BEGIN
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """
    Create an async engine.

    In-memory SQLite shares one connection (StaticPool), since each new
    connection would see an empty database. File-backed SQLite gives every
    session its own pooled connection with serialised transactions.
    """
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite":
        return create_async_engine(database_url, echo=echo, pool_pre_ping=True)

    if url.database in (None, "", ":memory:"):
        return create_async_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    engine = create_async_engine(
        database_url,
        echo=echo,
        connect_args={"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT},
    )
    _begin_immediate(engine)
    return engine


# Create async engine
engine = build_engine(settings.database_url, echo=settings.debug)

# Session factory
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def init_database() -> None:
    """Initialize database and create tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_database() -> None:
    """Close pooled connections."""
    await engine.dispose()


class DatabaseSession:
    """Context manager for database sessions."""

    async def __aenter__(self) -> AsyncSession:
        self.session = async_session_factory()
        return self.session

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type is not None:
            await self.session.rollback()
        await self.session.close()
