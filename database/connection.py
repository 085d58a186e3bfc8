"""
Database Connection Module

Provides the async SQLAlchemy engine and session factory.
Defaults to SQLite through the aiosqlite driver; any async SQLAlchemy URL
can be supplied through the DATABASE_URL setting.
"""

import logging
from pathlib import Path
from typing import Optional
from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, AsyncEngine, create_async_engine, async_sessionmaker

import config

logger = logging.getLogger(__name__)

# Singleton engine instance
_engine: Optional[AsyncEngine] = None

# Async session factory
_async_session_factory: Optional[async_sessionmaker] = None


def build_engine(database_url: str) -> AsyncEngine:
    """
    Create an async engine for the given URL.

    SQLite databases get a busy timeout so concurrent writers wait for the
    lock instead of failing; their parent directory is created if missing.
    """
    url = make_url(database_url)

    if url.get_backend_name() == "sqlite":
        if url.database and url.database != ":memory:":
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)
        return create_async_engine(
            database_url,
            echo=config.DB_ECHO,
            connect_args={"timeout": config.DB_BUSY_TIMEOUT},
        )

    return create_async_engine(
        database_url,
        echo=config.DB_ECHO,
        pool_size=5,
        max_overflow=10,
        pool_timeout=config.DB_POOL_TIMEOUT,
        pool_recycle=1800,  # Recycle connections after 30 minutes
    )


def get_async_engine() -> AsyncEngine:
    """
    Get or create the async SQLAlchemy engine.

    Returns:
        AsyncEngine: SQLAlchemy async engine
    """
    global _engine
    if _engine is None:
        _engine = build_engine(config.DATABASE_URL)
        logger.info("Database engine created: %s", _engine.url.render_as_string(hide_password=True))
    return _engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Session factory bound to an engine. Objects stay readable after commit."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def get_session_factory() -> async_sessionmaker:
    """Get async session factory (creates if not exists)."""
    global _async_session_factory
    if _async_session_factory is None:
        _async_session_factory = create_session_factory(get_async_engine())
    return _async_session_factory


async def ping_database() -> bool:
    """
    Check that the database answers a trivial query.

    Returns:
        bool: True if connection successful
    """
    try:
        engine = get_async_engine()
        async with engine.connect() as conn:
            result = await conn.execute(text("SELECT 1"))
            row = result.fetchone()
            return bool(row and row[0] == 1)
    except Exception as e:
        logger.error("Database connection failed: %s", e)
        return False


async def init_database():
    """
    Create tables if they do not exist.

    Should be called on application startup.
    """
    from .models import Base

    engine = get_async_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialized")


async def close_database():
    """
    Dispose of the engine and forget the session factory.

    Should be called on application shutdown.
    """
    global _engine, _async_session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        logger.info("Database connection closed")
    _async_session_factory = None
