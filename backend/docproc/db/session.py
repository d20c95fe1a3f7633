"""
Database session management.

Flow:
  1. Stores (services/stores.py) receive a session factory at construction.
  2. Every store operation opens its own short transaction via get_db_session().
  3. The transaction commits on context exit, or rolls back if the body raises.

One transaction per operation keeps the chunk loop free of long-lived
locks: a failed chunk insert never rolls back the chunks before it.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.pool import NullPool
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from docproc.core.config import settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

engine: AsyncEngine = create_async_engine(
    settings.database_url,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    pool_pre_ping=True,          # detect stale connections before use
    pool_recycle=3600,           # recycle connections every hour
    echo=settings.db_echo_sql,   # log SQL in dev; disable in prod
)

# Session factory: expire_on_commit=False keeps ORM objects usable after commit
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


@lru_cache(maxsize=1)
def worker_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    Session factory for Celery workers.

    Each task runs its coroutine in a fresh event loop, so pooled asyncpg
    connections cannot be reused between tasks: NullPool opens and closes
    one connection per session.
    """
    worker_engine = create_async_engine(
        settings.database_url,
        poolclass=NullPool,
        echo=settings.db_echo_sql,
    )
    return async_sessionmaker(
        bind=worker_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


# ---------------------------------------------------------------------------
# Transaction scope
# ---------------------------------------------------------------------------

@asynccontextmanager
async def get_db_session(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncGenerator[AsyncSession, None]:
    """
    Yield a session inside one transaction.

    Usage:
        async with get_db_session() as db:
            await db.execute(...)
    """
    factory = session_factory or AsyncSessionLocal
    async with factory() as session:
        async with session.begin():
            yield session


# ---------------------------------------------------------------------------
# Health check helper
# ---------------------------------------------------------------------------

async def check_db_health() -> dict:
    """Ping the database; used by /ready endpoint."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:
        logger.error("DB health check failed: %s", exc)
        return {"status": "error", "detail": str(exc)}
