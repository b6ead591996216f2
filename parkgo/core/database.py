"""
Database configuration and session management
"""

from typing import AsyncGenerator, Awaitable, Callable, Optional, TypeVar
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    AsyncEngine,
    async_sessionmaker,
    create_async_engine
)
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool, AsyncAdaptedQueuePool
from sqlalchemy import event
import logging
import asyncio
from contextlib import asynccontextmanager

from parkgo.config import settings
from parkgo.core.exceptions import ConcurrencyError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def configure_sqlite(engine: AsyncEngine) -> None:
    """
    Make SQLite take the write lock when a transaction begins.

    pysqlite's implicit BEGIN is disabled and every transaction is opened with
    BEGIN IMMEDIATE, so two writers never both read the old counter value.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_engine(url: str, testing: bool = False) -> AsyncEngine:
    """
    Create an async engine for the given URL
    """
    if testing or url.startswith("sqlite"):
        # NullPool doesn't accept pool parameters
        new_engine = create_async_engine(
            url,
            echo=settings.DB_ECHO,
            poolclass=NullPool,
        )
    else:
        new_engine = create_async_engine(
            url,
            echo=settings.DB_ECHO,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_timeout=settings.DB_POOL_TIMEOUT,
            pool_recycle=settings.DB_POOL_RECYCLE,
            poolclass=AsyncAdaptedQueuePool,
        )

    if url.startswith("sqlite"):
        configure_sqlite(new_engine)
    return new_engine


def create_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


# Create async engine
engine: AsyncEngine = create_engine(settings.DATABASE_URL, testing=settings.is_testing)

# Create async session factory
async_session = create_session_factory(engine)

# Create declarative base
Base = declarative_base()


async def init_db():
    """
    Initialize database connections
    """
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


async def close_db():
    """
    Close database connections
    """
    await engine.dispose()
    logger.info("Database connections closed")


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency to get database session with explicit transaction management
    Each service operation opens its own transaction boundary
    """
    async with async_session() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


class DatabaseManager:
    """
    Transaction handling for service operations
    """

    def __init__(self, retry_attempts: Optional[int] = None, retry_backoff: float = 0.05):
        self.retry_attempts = (
            settings.ATOMIC_RETRY_ATTEMPTS if retry_attempts is None else retry_attempts
        )
        self.retry_backoff = retry_backoff
        self.logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def transaction(self, session: AsyncSession):
        """
        Context manager for explicit transaction handling
        Commits on successful exit, rolls back on any exception
        """
        try:
            async with session.begin():
                yield session
        except Exception as e:
            self.logger.warning(f"Transaction rolled back: {type(e).__name__}: {e}")
            raise

    async def run_atomic(
        self,
        session: AsyncSession,
        func: Callable[..., Awaitable[T]],
        *args,
        **kwargs
    ) -> T:
        """
        Run ``func(session, *args, **kwargs)`` as one atomic unit.

        Store-level conflicts (lock timeouts, serialization failures) are
        retried ``retry_attempts`` times and then surfaced as
        ConcurrencyError. Domain errors roll back and propagate unchanged.
        """
        attempt = 0
        while True:
            try:
                async with self.transaction(session):
                    return await func(session, *args, **kwargs)
            except OperationalError as e:
                if attempt >= self.retry_attempts:
                    self.logger.error(
                        "Atomic unit failed after retry",
                        extra={"operation": getattr(func, "__name__", str(func)), "attempts": attempt + 1}
                    )
                    raise ConcurrencyError() from e
                attempt += 1
                self.logger.warning(
                    f"Store conflict, retrying atomic unit: {e.orig if e.orig else e}",
                    extra={"operation": getattr(func, "__name__", str(func)), "attempt": attempt}
                )
                await asyncio.sleep(self.retry_backoff * attempt)


# Create global database manager
db_manager = DatabaseManager()
