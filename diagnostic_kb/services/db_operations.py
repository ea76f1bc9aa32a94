"""
Database operations for the diagnostics knowledge base.

This module provides:
1. The shared async engine (created lazily from the environment)
2. Dict conversion for SQLAlchemy results
3. Schema creation helpers
"""
import logging
import os
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from sqlalchemy.engine import Result, make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from diagnostic_kb.tables import metadata

load_dotenv()

logger = logging.getLogger(__name__)

# Database connection
DB_USER = os.getenv("DB_USER", "postgres")
DB_PASSWORD = os.getenv("DB_PASSWORD", "postgres")
DB_HOST = os.getenv("DB_HOST", "db")
DB_PORT = os.getenv("DB_PORT", "5432")
DB_NAME = os.getenv("DB_NAME", "diagnostic_kb")
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql+asyncpg://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}",
)
DB_ECHO = os.getenv("DB_ECHO", "0").lower() in ("1", "true", "yes")

# Replaced wholesale by tests and scripts that need another database
engine: Optional[AsyncEngine] = None


def get_engine() -> AsyncEngine:
    """Return the process-wide engine, creating it on first use."""
    global engine
    if engine is None:
        logger.info("Creating database engine for %s", make_url(DATABASE_URL).render_as_string(hide_password=True))
        engine = create_async_engine(DATABASE_URL, echo=DB_ECHO, pool_pre_ping=True)
    return engine


def result_to_dicts(result: Result) -> List[Dict[str, Any]]:
    """Materialize a result as a list of plain dicts."""
    return [dict(row) for row in result.mappings()]


async def create_schema(target: Optional[AsyncEngine] = None) -> None:
    """Create every knowledge-base table that does not exist yet."""
    target = target or get_engine()
    async with target.begin() as conn:
        await conn.run_sync(metadata.create_all)


async def drop_schema(target: Optional[AsyncEngine] = None) -> None:
    target = target or get_engine()
    async with target.begin() as conn:
        await conn.run_sync(metadata.drop_all)
