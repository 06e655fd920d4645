"""
Database Session Management
===========================

Builds the async engine and session factory.

The engine is created once in the application lifespan and handed to
the services that need it; nothing here keeps module-level state, so
tests can build their own engine against SQLite.
"""

import logging
from typing import Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from iap.config import Settings

logger = logging.getLogger(__name__)


def create_engine(settings: Settings) -> AsyncEngine:
    """
    Create the async database engine.

    Uses connection pooling with the following configuration:
    - pool_size: 10 connections
    - max_overflow: 20 additional connections
    - pool_recycle: Recycle connections every 5 minutes so idle
      connections dropped by PgBouncer are never handed out
    - pool_use_lifo: Prefer the most-recently-returned connection
    """
    if not settings.database_url_async:
        raise ValueError(
            "Database URL not configured. "
            "Please set DATABASE_URL environment variable."
        )

    return create_async_engine(
        settings.database_url_async,
        echo=False,
        pool_size=10,
        max_overflow=20,
        pool_recycle=300,
        pool_use_lifo=True,
        pool_timeout=30,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create the async session factory bound to *engine*."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_db(engine: AsyncEngine, warm_connections: int = 3) -> None:
    """
    Verify the database is reachable and warm the connection pool.

    Called on application startup so the first receipt submission
    doesn't pay TCP + TLS + auth latency.
    """
    conns = []
    try:
        for _ in range(warm_connections):
            conn = await engine.connect()
            await conn.execute(text("SELECT 1"))
            conns.append(conn)
    except Exception as exc:
        logger.warning("Pool warmup partially failed: %s", exc)
    finally:
        for conn in conns:
            await conn.close()

    logger.info("Database connection established (pool warmed: %d connections)", len(conns))


async def close_db(engine: Optional[AsyncEngine]) -> None:
    """
    Close database connections.

    Called on application shutdown to clean up resources.
    """
    if engine is not None:
        await engine.dispose()
        logger.info("Database connections closed")
