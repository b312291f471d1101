"""
Database session management for the idsync API server.

One async engine serves the portal database. Request handlers get a session
through the get_db dependency: the whole request is one transaction, so a
service account and its audit entry are committed together or not at all.
"""

from collections.abc import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from idsync.config import settings
from idsync.logging_config import get_logger

logger = get_logger(__name__)

engine = create_async_engine(
    str(settings.database_url),
    echo=settings.debug,
    pool_pre_ping=True,
    pool_size=settings.database_pool_size,
    max_overflow=settings.database_max_overflow,
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def init_db() -> None:
    """Check that the portal database is reachable."""
    logger.info("Connecting to portal database", pool_size=settings.database_pool_size)
    async with engine.begin() as conn:
        await conn.execute(text("SELECT 1"))
    logger.info("Portal database connection established")


async def close_db() -> None:
    logger.info("Closing portal database connection pool")
    await engine.dispose()


async def get_db() -> AsyncGenerator[AsyncSession]:
    """
    Dependency that provides the request's session.

    Commits when the handler returns. Any exception rolls back everything
    staged during the request, including audit entries.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            logger.info("Rolling back request transaction", error_type=type(e).__name__)
            await session.rollback()
            raise


async def get_db_health() -> bool:
    """Whether the database answers a trivial query."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error("Database health check failed", error=str(e))
        return False
