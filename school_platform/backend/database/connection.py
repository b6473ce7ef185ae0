"""
School Platform Quiz Engine
Async engine, session factory and health probe for the quiz store

One engine per process. In-memory SQLite (tests) shares a single connection
through StaticPool; file SQLite and PostgreSQL give each session its own
pooled connection.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy import event, func, select, text
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncSession,
    async_sessionmaker,
    AsyncEngine
)
from sqlalchemy.pool import StaticPool

from .models import Base, Quiz
from ...config import get_settings

# Configure logging
logger = logging.getLogger(__name__)

async_engine: Optional[AsyncEngine] = None
AsyncSessionLocal: Optional[async_sessionmaker] = None

ASYNC_DRIVERS = {
    "postgresql://": "postgresql+asyncpg://",
    "postgres://": "postgresql+asyncpg://",
    "sqlite://": "sqlite+aiosqlite://",
}


def get_async_database_url(database_url: str) -> str:
    """Rewrite a plain database URL to its async driver form"""
    for prefix, async_prefix in ASYNC_DRIVERS.items():
        if database_url.startswith(prefix):
            return async_prefix + database_url[len(prefix):]
    return database_url


def is_memory_database(url: str) -> bool:
    return ":memory:" in url or url.rstrip("/").endswith("sqlite+aiosqlite:")


def build_engine(database_url: str) -> AsyncEngine:
    settings = get_settings()
    url = get_async_database_url(database_url)

    if url.startswith("sqlite"):
        engine_kwargs = {"connect_args": {"check_same_thread": False, "timeout": 20}}
        if is_memory_database(url):
            # Every session must see the same in-memory database
            engine_kwargs["poolclass"] = StaticPool
        engine = create_async_engine(url, echo=settings.DB_ECHO, **engine_kwargs)

        @event.listens_for(engine.sync_engine, "connect")
        def enable_foreign_keys(dbapi_connection, connection_record):
            # Answer and question cascades rely on enforced foreign keys
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    return create_async_engine(
        url,
        echo=settings.DB_ECHO,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_recycle=3600,
        pool_pre_ping=True
    )


async def init_database(database_url: Optional[str] = None):
    """Create the engine and session factory, then the schema"""
    global async_engine, AsyncSessionLocal

    database_url = database_url or get_settings().database_url
    async_engine = build_engine(database_url)
    AsyncSessionLocal = async_sessionmaker(
        bind=async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )

    try:
        async with async_engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
            await conn.run_sync(Base.metadata.create_all)
    except Exception as e:
        logger.error(f"Database initialization failed for {async_engine.url.drivername}: {e}")
        raise

    logger.info(f"Quiz store ready on {async_engine.url.drivername}")


@asynccontextmanager
async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Session that rolls back whatever the caller left uncommitted on error"""
    if not AsyncSessionLocal:
        raise RuntimeError("Database not initialized. Call init_database() first.")

    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one session per request"""
    async with get_async_session() as session:
        yield session


async def check_database_health() -> dict:
    """Probe the store with a real query against the quiz table"""
    started = time.time()
    try:
        async with get_async_session() as session:
            quiz_count = (await session.execute(select(func.count(Quiz.id)))).scalar_one()
    except Exception as e:
        logger.warning(f"Database health check failed: {e}")
        return {"status": "unhealthy", "error": str(e)}

    return {
        "status": "healthy",
        "driver": async_engine.url.drivername,
        "quiz_count": quiz_count,
        "latency_ms": round((time.time() - started) * 1000, 2)
    }


async def close_database_connections():
    """Dispose of the engine and forget the session factory"""
    global async_engine, AsyncSessionLocal

    if async_engine:
        await async_engine.dispose()
        async_engine = None
        AsyncSessionLocal = None
        logger.info("Database engine disposed")


__all__ = [
    "init_database",
    "get_async_session",
    "get_db",
    "check_database_health",
    "close_database_connections",
    "get_async_database_url"
]
