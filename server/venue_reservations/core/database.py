"""Database configuration, async session management and transaction retries."""

import asyncio
import logging
from typing import AsyncGenerator, Awaitable, Callable, TypeVar

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

from .config import settings
from .exceptions import TransientWriteConflictError
from .observability import metrics_collector

logger = logging.getLogger(__name__)

T = TypeVar("T")

# SQLSTATE codes for serialization_failure and deadlock_detected
TRANSIENT_SQLSTATES = {"40001", "40P01"}

TRANSIENT_MESSAGES = (
    "deadlock detected",
    "could not serialize access",
    "database is locked",
)


# Create async engine
engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    future=True,
    pool_pre_ping=True,
    # Use StaticPool for SQLite in-memory databases (if needed for testing)
    poolclass=StaticPool if "sqlite" in settings.database_url else None,
    connect_args={"check_same_thread": False} if "sqlite" in settings.database_url else {},
)

# Create async session factory
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
    autocommit=False,
)

# Create declarative base for models
Base = declarative_base()


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency function that yields database sessions.

    Yields:
        AsyncSession: Database session
    """
    async with async_session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# Alias for FastAPI dependency injection
get_db = get_async_session


def is_transient_write_conflict(exc: BaseException) -> bool:
    """
    Return True for deadlocks and serialization failures worth retrying.

    asyncpg exposes the SQLSTATE as `sqlstate`, psycopg as `pgcode`;
    SQLite only reports lock contention through its message.
    """
    if not isinstance(exc, DBAPIError):
        return False

    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code in TRANSIENT_SQLSTATES:
        return True

    message = str(orig).lower()
    return any(marker in message for marker in TRANSIENT_MESSAGES)


async def run_in_transaction(
    session_factory: async_sessionmaker,
    work: Callable[[AsyncSession], Awaitable[T]],
    *,
    operation: str,
    max_attempts: int,
    backoff_seconds: float = 0.0,
) -> T:
    """
    Run `work` in a fresh session and commit, retrying transient conflicts.

    Every attempt gets a new session so no state leaks from a rolled back
    attempt. Non-transient errors propagate immediately.

    Raises:
        TransientWriteConflictError: If every attempt hit a transient conflict
    """
    for attempt in range(1, max_attempts + 1):
        async with session_factory() as session:
            try:
                result = await work(session)
                await session.commit()
                return result
            except DBAPIError as e:
                await session.rollback()
                if not is_transient_write_conflict(e):
                    raise

                logger.warning(
                    f"Transient write conflict in {operation}. Retry {attempt}/{max_attempts}",
                    extra={
                        "operation": operation,
                        "attempt": attempt,
                        "max_attempts": max_attempts,
                        "error": str(e.orig),
                    }
                )
                if attempt == max_attempts:
                    raise TransientWriteConflictError(operation, attempts=attempt) from e

                metrics_collector.record_transaction_retry(operation)
                if backoff_seconds:
                    await asyncio.sleep(backoff_seconds)

    raise TransientWriteConflictError(operation, attempts=max_attempts)


async def lock_resource(session: AsyncSession, resource_id) -> None:
    """
    Serialize writers of one resource until the transaction ends.

    PostgreSQL gets a transaction-scoped advisory lock; SQLite serializes
    writers on its own so nothing is needed there.
    """
    bind = session.get_bind()
    if bind is not None and bind.dialect.name == "postgresql":
        await session.execute(
            text("SELECT pg_advisory_xact_lock(hashtext(:resource_id))"),
            {"resource_id": str(resource_id)}
        )


async def init_db() -> None:
    """Initialize the database by creating all tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close database connections."""
    await engine.dispose()
