"""
Database layer — async SQLAlchemy 2.0 engine + session factory.

Provides:
    • Engine construction from a URL (PostgreSQL via asyncpg in production,
      SQLite via aiosqlite in tests)
    • Session factory handed to the repository
    • Base model for ORM entities
    • Lifecycle helpers used by the application lifespan

Nothing connects at import time; ``main.py`` builds the engine during
startup and disposes it on shutdown.

Usage:
    from guardpulse.app.db.session import build_engine, build_session_factory

    engine = build_engine()
    sessions = build_session_factory(engine)
    repository = SqlAlchemyRepository(sessions)
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from guardpulse.app.core.config import settings

logger = logging.getLogger(__name__)


# ── ORM Base ──
class Base(DeclarativeBase):
    """Declarative base for all ORM models."""
    pass


# ── Engine ──
def build_engine(url: Optional[str] = None, **options: Any) -> AsyncEngine:
    """Create the async engine; pool sizing applies to server databases only."""
    url = url or settings.DATABASE_URL
    kwargs: dict = {"echo": settings.DATABASE_ECHO}
    if not url.startswith("sqlite"):
        kwargs.update(
            pool_size=settings.DATABASE_POOL_SIZE,
            max_overflow=settings.DATABASE_MAX_OVERFLOW,
            pool_pre_ping=True,
        )
    kwargs.update(options)
    return create_async_engine(url, **kwargs)


# ── Session Factory ──
def build_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


# ── Lifecycle ──
async def init_db(engine: AsyncEngine) -> None:
    """Create all tables (dev/test only — use migrations in production)."""
    from guardpulse.app.db import models  # noqa: F401  registers tables on Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialised")


async def ping_database(engine: Optional[AsyncEngine]) -> bool:
    """True if the database answers ``SELECT 1``."""
    if engine is None:
        return False
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning("Database ping failed: %s", e)
        return False


async def close_db(engine: AsyncEngine) -> None:
    """Dispose engine connections."""
    await engine.dispose()
    logger.info("Database connections closed")
