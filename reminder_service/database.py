"""Database configuration and connection management."""

from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from reminder_service.config import settings


def async_database_url(url: str) -> str:
    """Convert a sync PostgreSQL URL to the asyncpg driver."""
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def engine_options(url: str) -> dict[str, Any]:
    """Pool settings for PostgreSQL; SQLite keeps the SQLAlchemy defaults."""
    if url.startswith("sqlite"):
        return {"echo": settings.debug}
    return {
        "echo": settings.debug,
        "pool_pre_ping": True,
        "pool_size": 10,
        "max_overflow": 20,
        "pool_recycle": 3600,
        "connect_args": {
            "server_settings": {
                "application_name": settings.app_name,
            },
        },
    }


def build_engine(url: str | None = None) -> AsyncEngine:
    """Create an async engine for the configured (or given) database URL."""
    database_url = async_database_url(url or settings.database_url)
    return create_async_engine(database_url, **engine_options(database_url))


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory shared by the API and the delivery workers."""
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


DATABASE_URL = async_database_url(settings.database_url)

# Create async engine with connection pooling
engine: AsyncEngine = build_engine(DATABASE_URL)

# Async session factory
AsyncSessionLocal = build_session_factory(engine)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting async database sessions."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def check_database_connection() -> bool:
    """Check if database connection is healthy."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False
