"""
Database Connection Management

One async engine per process, pointed either straight at Postgres or at the
hosted transaction pooler (``POSTGRES_POOLED``). Behind the pooler the
engine keeps no pool of its own and asyncpg's prepared statement cache is
off, since consecutive statements may land on different server connections.
"""

import time
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from nanoassist.config import get_settings

logger = structlog.get_logger(__name__)
settings = get_settings()

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def engine_options(url: str, pooled: bool) -> Dict[str, Any]:
    options: Dict[str, Any] = {"echo": settings.database.echo, "pool_pre_ping": True}
    if pooled:
        options["poolclass"] = NullPool
        if "+asyncpg" in url:
            options["connect_args"] = {"statement_cache_size": 0}
    elif url.startswith("postgresql"):
        options.update(pool_size=5, max_overflow=10, pool_recycle=1800)
    return options


async def ping(engine: AsyncEngine) -> float:
    """Round-trip a ``SELECT 1``; returns the latency in milliseconds."""
    start = time.perf_counter()
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
    return (time.perf_counter() - start) * 1000


async def init_database(url: Optional[str] = None, verify: bool = True) -> AsyncEngine:
    """
    Create the engine and session factory.

    The engine stays installed when the verification ping fails, so queries
    start working once the database becomes reachable.

    Raises:
        Exception: The verification ping failed
    """
    global _engine, _session_factory

    if _engine is not None:
        return _engine

    url = url or settings.database.async_url
    _engine = create_async_engine(url, **engine_options(url, settings.database.pooled))
    _session_factory = async_sessionmaker(
        bind=_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    if verify:
        try:
            latency_ms = await ping(_engine)
        except Exception as e:
            logger.error("Database unreachable", host=settings.database.host, error=str(e))
            raise
        logger.info(
            "Database connected",
            host=settings.database.host,
            pooled=settings.database.pooled,
            latency_ms=round(latency_ms, 2),
        )

    return _engine


async def close_database() -> None:
    global _engine, _session_factory

    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _session_factory = None
    logger.info("Database engine disposed")


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    Raises:
        RuntimeError: init_database() has not run
    """
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")
    return _session_factory


@asynccontextmanager
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Transactional session: commits on exit, rolls back on error.

    Example:
        async with get_db() as db:
            db.add_all(rows)
    """
    session = get_session_factory()()
    try:
        yield session
        await session.commit()
    except Exception as e:
        logger.error("Rolling back session", error=str(e), error_type=type(e).__name__)
        await session.rollback()
        raise
    finally:
        await session.close()


async def check_database_health() -> dict:
    if _engine is None:
        return {"status": "unhealthy", "error": "not initialized"}
    try:
        latency_ms = await ping(_engine)
    except Exception as e:
        return {"status": "unhealthy", "error": str(e)}
    return {"status": "healthy", "latency_ms": round(latency_ms, 2)}
