"""Database engine and async session management."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy import event
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from pos_core.core.config import settings
from pos_core.core.exceptions import InternalError, ServiceError, translate_integrity_error

logger = logging.getLogger(__name__)


def build_engine(database_url: str, **overrides) -> AsyncEngine:
    """Create an async engine with pool settings suited to the backend."""
    pool_config = {}
    if not database_url.startswith("sqlite"):
        # PostgreSQL connection pooling configuration
        pool_config = {
            "pool_size": settings.db_pool_size,
            "max_overflow": settings.db_max_overflow,
            "pool_pre_ping": True,
            "pool_recycle": 3600,  # Recycle connections after 1 hour
        }
    pool_config.update(overrides)

    engine = create_async_engine(database_url, **pool_config)

    # Enable foreign key enforcement for SQLite
    if database_url.startswith("sqlite"):
        @event.listens_for(engine.sync_engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


engine = build_engine(settings.database_url)
SessionLocal = build_session_factory(engine)


@asynccontextmanager
async def transaction(
    session_factory: async_sessionmaker[AsyncSession],
    failure_message: str,
) -> AsyncGenerator[AsyncSession, None]:
    """Run a block as one unit of work.

    Commits when the block finishes. On any error the transaction is rolled
    back before the error propagates: service errors pass through unchanged,
    integrity errors become Conflict/ValidationFailed, anything else becomes
    an InternalError carrying ``failure_message``. The session is closed in
    every case.
    """
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except ServiceError:
            await session.rollback()
            raise
        except IntegrityError as e:
            await session.rollback()
            logger.warning(f"{failure_message}: integrity error: {e.orig}")
            raise translate_integrity_error(e) from e
        except Exception as e:
            await session.rollback()
            logger.error(f"{failure_message}: {e}", exc_info=True)
            raise InternalError(failure_message) from e
