"""Async engine and session factory for the pipeline store."""
import logging
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from call_intelligence.core.config import settings
from call_intelligence.db.models import Base

logger = logging.getLogger(__name__)

_ASYNC_DRIVERS = {
    "postgresql://": "postgresql+asyncpg://",
    "postgres://": "postgresql+asyncpg://",
    "sqlite://": "sqlite+aiosqlite://",
}


def async_database_url(url: str) -> str:
    """Rewrite a plain DATABASE_URL to use the asyncpg / aiosqlite drivers."""
    for plain, driver in _ASYNC_DRIVERS.items():
        if url.startswith(plain):
            return driver + url[len(plain):]
    return url


engine = create_async_engine(
    async_database_url(settings.database_url),
    echo=False,
    pool_pre_ping=not settings.database_url.startswith("sqlite"),
)

# Sessions outlive commits inside workers, so loaded rows must stay readable.
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def init_db() -> None:
    """Create missing tables; the Alembic migration remains the source of truth."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"[DATABASE] Tables ready - Tables: {len(Base.metadata.tables)}")


async def get_db() -> AsyncIterator[AsyncSession]:
    """Request-scoped session dependency."""
    async with AsyncSessionLocal() as session:
        yield session
