############################################################
#
# callgate - LLM Call Gateway, Response Cache and Call Ledger
#
# session.py: Async engine, session factory and FastAPI dependency
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Database engine and session management."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from backend.app.db.base import Base
from backend.app.logging_config import get_logger
from backend.app.settings import get_settings

logger = get_logger(__name__)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    # SQLite ignores FOREIGN KEY clauses unless asked per connection
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_engine_from_url(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine, applying per-dialect connection options."""
    settings = get_settings()
    kwargs = {"echo": echo, "pool_pre_ping": True}
    if database_url.startswith("sqlite"):
        new_engine = create_async_engine(database_url, **kwargs)
        event.listen(new_engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
        return new_engine

    kwargs.update(
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        pool_recycle=3600,
    )
    return create_async_engine(database_url, **kwargs)


def create_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind, expire_on_commit=False, class_=AsyncSession)


_settings = get_settings()
engine = create_engine_from_url(_settings.database_url, echo=_settings.database_echo)
AsyncSessionLocal = create_session_factory(engine)


async def get_async_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a request-scoped session."""
    async with AsyncSessionLocal() as session:
        yield session


@asynccontextmanager
async def get_async_db_context() -> AsyncGenerator[AsyncSession, None]:
    """Session context manager for scripts and background tasks."""
    async with AsyncSessionLocal() as session:
        yield session


async def init_db(bind: AsyncEngine = engine) -> None:
    """Create any missing tables. Schema migrations are managed outside the app."""
    # Import models so every table is registered on Base.metadata
    from backend.app.db import models  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("database_initialized", url=bind.url.render_as_string(hide_password=True))


async def close_db(bind: AsyncEngine = engine) -> None:
    await bind.dispose()
