"""
Database Connection Management

One process-wide async engine for the raw and clean transaction tables.
PostgreSQL (asyncpg) in deployment; SQLite (aiosqlite) for local runs and
tests. Every ``get_db()`` block is a single transaction.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

import structlog
from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool, StaticPool

from transaction_insights.config import get_settings
from transaction_insights.database.models import Base

logger = structlog.get_logger(__name__)

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None

NOT_INITIALIZED = "Database not initialized. Call init_database() first."


def _engine_options(url: str, echo: bool) -> Dict[str, Any]:
    options: Dict[str, Any] = {"echo": echo, "pool_pre_ping": True}
    parsed = make_url(url)
    if parsed.get_backend_name() == "sqlite" and parsed.database in (None, "", ":memory:"):
        # In-memory SQLite lives and dies with its connection: share one
        options["poolclass"] = StaticPool
        options["connect_args"] = {"check_same_thread": False}
    else:
        options["poolclass"] = NullPool
    return options


async def init_database(url: Optional[str] = None) -> AsyncEngine:
    """
    Create the engine and session factory and check connectivity.

    Args:
        url: Async database URL; defaults to ``DatabaseSettings.async_url``

    Returns:
        The engine; an already initialized engine is returned unchanged
    """
    global _engine, _session_factory

    if _engine is not None:
        logger.warning("Database already initialized")
        return _engine

    settings = get_settings().database
    url = url or settings.async_url

    engine = create_async_engine(url, **_engine_options(url, settings.echo))
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("Database unreachable", error=str(e), dialect=engine.dialect.name)
        await engine.dispose()
        raise

    _engine = engine
    _session_factory = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
    logger.info("Database connection established", dialect=engine.dialect.name)
    return engine


async def create_tables() -> None:
    """Create missing tables and indexes"""
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables ensured", tables=sorted(Base.metadata.tables))


async def close_database() -> None:
    global _engine, _session_factory

    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _session_factory = None
    logger.info("Database engine disposed")


def get_engine() -> AsyncEngine:
    """
    Raises:
        RuntimeError: If database is not initialized
    """
    if _engine is None:
        raise RuntimeError(NOT_INITIALIZED)
    return _engine


@asynccontextmanager
async def get_db() -> AsyncIterator[AsyncSession]:
    """
    Transactional session scope.

    Commits when the block exits normally, rolls back and re-raises otherwise.

    Example:
        async with get_db() as db:
            await db.execute(delete(CleanTransactionRecord))
    """
    if _session_factory is None:
        raise RuntimeError(NOT_INITIALIZED)

    async with _session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.error("Transaction rolled back", error=str(e), error_type=type(e).__name__)
            raise
