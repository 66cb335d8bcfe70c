"""Async database engine, session factory and declarative base."""

from typing import AsyncGenerator, Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
import structlog

from academy.core.config import settings

logger = structlog.get_logger()


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    # SQLite ignores foreign keys unless asked per connection
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def configure_engine(url: Optional[str] = None, **engine_kwargs) -> AsyncEngine:
    """(Re)build the engine and session factory.

    Called lazily with the configured ``DATABASE_URL``; tests call it with
    their own URL before the application starts.
    """
    global _engine, _session_factory

    url = url or settings.DATABASE_URL
    if url.startswith("postgresql"):
        engine_kwargs.setdefault("pool_size", settings.DATABASE_POOL_SIZE)
        engine_kwargs.setdefault("max_overflow", settings.DATABASE_MAX_OVERFLOW)
        engine_kwargs.setdefault("pool_pre_ping", True)

    _engine = create_async_engine(url, echo=settings.DATABASE_ECHO, **engine_kwargs)
    if url.startswith("sqlite"):
        event.listen(_engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
    _session_factory = async_sessionmaker(_engine, expire_on_commit=False)
    logger.info("Database engine configured", url_scheme=url.split(":", 1)[0])
    return _engine


def get_engine() -> AsyncEngine:
    if _engine is None:
        configure_engine()
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    if _session_factory is None:
        configure_engine()
    return _session_factory


async def init_db() -> None:
    """Create all tables."""
    # Import models so they register on Base.metadata
    import academy.models  # noqa: F401

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema ready")


async def dispose_db() -> None:
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a session."""
    async with get_session_factory()() as session:
        yield session
