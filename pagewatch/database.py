"""Database connection and session management."""

import logging
from typing import Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .config import get_settings
from .core.exceptions import DatabaseError


logger = logging.getLogger(__name__)

# Base class for models
Base = declarative_base()

_engine: Optional[AsyncEngine] = None
_session_factory = None


def create_engine_for(url: str) -> AsyncEngine:
    """Create an async engine with pool settings matching the driver."""
    settings = get_settings()

    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url:
            # One shared connection, otherwise every checkout sees an empty database
            kwargs["poolclass"] = StaticPool
        return create_async_engine(url, echo=False, **kwargs)

    return create_async_engine(
        url,
        echo=False,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_timeout=settings.db_pool_timeout,
        pool_pre_ping=settings.db_pool_pre_ping,
        pool_recycle=settings.db_pool_recycle,
        pool_reset_on_return='rollback',
        connect_args={
            "server_settings": {"application_name": "pagewatch"},
            "command_timeout": 60,
        },
    )


def create_session_factory(engine: AsyncEngine):
    return sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=True,
    )


def get_engine() -> AsyncEngine:
    """Get the process-wide engine, creating it on first use."""
    global _engine
    if _engine is None:
        _engine = create_engine_for(get_settings().async_database_url)
    return _engine


def get_session_factory():
    """Get the process-wide session factory."""
    global _session_factory
    if _session_factory is None:
        _session_factory = create_session_factory(get_engine())
    return _session_factory


async def init_db(engine: Optional[AsyncEngine] = None) -> None:
    """Create tables (when allowed) and verify the database answers."""
    engine = engine or get_engine()
    logger.info("🔧 Checking database initialization...")

    try:
        # Import all models to ensure they're registered
        from . import models  # noqa: F401

        if get_settings().allow_create_all:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        else:
            logger.info("Skipping create_all() because ALLOW_CREATE_ALL is false (use migrations).")

        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("✅ Database initialized")

    except Exception as init_error:
        logger.error(f"❌ Database initialization failed: {init_error}")
        raise DatabaseError(f"Database initialization failed: {init_error}") from init_error


async def get_db():
    """Dependency to get database session with proper cleanup."""
    session = get_session_factory()()
    try:
        yield session
    except Exception as e:
        logger.error(f"Database session error: {e}")
        await session.rollback()
        raise
    finally:
        await session.close()


async def close_db_engine() -> None:
    """Dispose the engine and all pooled connections."""
    global _engine, _session_factory
    if _engine is None:
        return
    try:
        await _engine.dispose()
        logger.info("✅ Database engine disposed and all connections closed")
    except Exception as e:
        logger.error(f"❌ Error closing database engine: {e}")
    finally:
        _engine = None
        _session_factory = None
