"""
Database engine for the TWAP bot ledger

PostgreSQL (asyncpg) in production, SQLite (aiosqlite) for local runs.
Tables are created on startup; schema changes go through Alembic.
"""

from typing import Any, Dict, Optional

from loguru import logger
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from config.config import DATABASE_URL, ENVIRONMENT
from src.database.models import Base


engine: Optional[AsyncEngine] = None
AsyncSessionLocal: Optional[async_sessionmaker[AsyncSession]] = None


def _engine_options(url: str) -> Dict[str, Any]:
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}

    # Slice execution holds a session only around single writes,
    # so a small pool is enough even with the deposit monitor running
    return {
        "pool_size": 5,
        "max_overflow": 5,
        "pool_pre_ping": True,
        "pool_recycle": 1800,
        "connect_args": {"server_settings": {"application_name": "twap_buyback_bot"}},
    }


def get_engine(database_url: Optional[str] = None) -> AsyncEngine:
    """
    Lazily create the process-wide engine

    Args:
        database_url: Override DATABASE_URL
    """
    global engine

    if engine is None:
        url = database_url or DATABASE_URL
        engine = create_async_engine(url, echo=False, **_engine_options(url))
        logger.info(f"Database engine created ({engine.dialect.name}, {ENVIRONMENT})")

    return engine


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    global AsyncSessionLocal

    if AsyncSessionLocal is None:
        # expire_on_commit=False: rows are read after commit to build snapshots
        AsyncSessionLocal = async_sessionmaker(get_engine(), expire_on_commit=False, autoflush=False)

    return AsyncSessionLocal


async def init_db() -> None:
    """Create missing tables (sessions, trades, balances, deposits, withdrawals)"""
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info(f"Database schema ready: {', '.join(sorted(Base.metadata.tables))}")


async def dispose_engine() -> None:
    """Close pooled connections (application shutdown)"""
    global engine, AsyncSessionLocal

    if engine is None:
        return

    await engine.dispose()
    engine = None
    AsyncSessionLocal = None
    logger.info("Database engine disposed")
