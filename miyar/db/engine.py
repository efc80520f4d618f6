"""
Async SQLAlchemy plumbing for the learning pipeline.

One engine and one session factory per process, created on first use.
PostgreSQL goes through asyncpg with a bounded pool; SQLite (development
and tests) goes through aiosqlite without pool settings.
"""

from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from miyar.config import Settings, settings

logger = structlog.get_logger(__name__)


class Base(DeclarativeBase):
    """Declarative base shared by every ml_ table."""


_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def build_engine(config: Settings = settings) -> AsyncEngine:
    url = config.async_database_url
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=config.debug)
    return create_async_engine(
        url,
        echo=config.debug,
        pool_size=config.db_pool_size,
        max_overflow=config.db_max_overflow,
        pool_recycle=config.db_pool_recycle,
        pool_pre_ping=True,
    )


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        _engine = build_engine()
        logger.info("database_engine_created", dialect=_engine.dialect.name)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Sessions keep loaded rows usable after commit (expire_on_commit=False)."""
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(get_engine(), class_=AsyncSession, expire_on_commit=False)
    return _session_factory


async def create_tables(engine: AsyncEngine) -> None:
    # Registers every model on Base.metadata
    import miyar.db.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def init_db(config: Settings = settings) -> None:
    """
    Create the ml_ tables in development and testing.

    Other environments own their schema through migrations, so this only
    warms up the engine there.
    """
    engine = get_engine()
    if config.environment.lower() in ("development", "testing"):
        await create_tables(engine)
        logger.info("ml_tables_created", environment=config.environment)
    else:
        logger.info("ml_tables_managed_externally", environment=config.environment)


async def close_db() -> None:
    global _engine, _session_factory
    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _session_factory = None
    logger.info("database_closed")
