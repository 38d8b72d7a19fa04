"""
Database Connection Module
Async SQLAlchemy engine for the API, plus a blocking session factory for
the Celery worker.
"""

from functools import lru_cache
from typing import AsyncIterator

from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from stallfront.core.config import get_settings

settings = get_settings()


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        return {}
    return {
        "pool_size": 5,  # Connection pool size
        "max_overflow": 10,  # Extra connections when pool is full
        "pool_pre_ping": True,
    }


# Create async engine
engine = create_async_engine(
    settings.database_url,
    echo=settings.database_echo,
    **_engine_options(settings.database_url),
)

# Session factory - creates new database sessions
async_session_maker = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False  # Objects remain accessible after commit
)


# Base class for all our models
class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncIterator[AsyncSession]:
    """
    Dependency injection for FastAPI routes.
    Yields a database session and ensures cleanup.
    """
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db() -> None:
    """
    Create all tables in database.
    Called once at application startup.
    """
    # Importing the models registers them on Base.metadata
    from stallfront import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_db() -> None:
    await engine.dispose()


@lru_cache()
def get_sync_session_maker() -> sessionmaker[Session]:
    """Blocking sessions for Celery tasks, which run outside the event loop."""
    url = settings.sync_database_url
    sync_engine = create_engine(url, **_engine_options(url))
    return sessionmaker(bind=sync_engine, expire_on_commit=False)
