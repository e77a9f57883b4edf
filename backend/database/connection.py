"""
Async PostgreSQL connection for the SMS subsystem.

The engine is built lazily from settings, so models and repositories
import cleanly in tests with no database configured.
"""

import logging
from functools import lru_cache

from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from config import get_settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


def to_async_url(database_url: str) -> str:
    """Hosted Postgres providers hand out postgres:// URLs; asyncpg needs its own scheme."""
    for prefix in ("postgres://", "postgresql://"):
        if database_url.startswith(prefix):
            return "postgresql+asyncpg://" + database_url[len(prefix):]
    return database_url


@lru_cache(maxsize=1)
def get_engine() -> AsyncEngine:
    settings = get_settings()
    if not settings.DATABASE_URL:
        raise ValueError("DATABASE_URL environment variable is not set")

    connect_args = {"ssl": "require"} if settings.DATABASE_SSL else {}

    return create_async_engine(
        to_async_url(settings.DATABASE_URL),
        echo=False,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
        connect_args=connect_args,
    )


@lru_cache(maxsize=1)
def get_session_factory() -> async_sessionmaker:
    return async_sessionmaker(
        get_engine(),
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def get_db():
    """FastAPI dependency yielding one session per request"""
    async with get_session_factory()() as session:
        yield session


async def init_db() -> None:
    """Verify connectivity and report SMS tables missing from the public schema."""
    async with get_engine().connect() as conn:
        await conn.execute(text("SELECT 1"))
        result = await conn.execute(text(
            "SELECT table_name FROM information_schema.tables WHERE table_schema = 'public'"
        ))
        existing = {row[0] for row in result}

    missing = sorted(set(Base.metadata.tables) - existing)
    if missing:
        logger.warning(f"Missing tables: {missing}")
