"""
Database module for storyflow.

Provides async SQLAlchemy engine with SQLite WAL mode,
session management, and schema initialization.
"""
import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from storyflow.db.engine import async_session, build_engine, build_sessionmaker, engine, get_session, shutdown
from storyflow.db.models import (
    Asset,
    Base,
    CostEntry,
    GenerationCacheEntry,
    RenderedVideo,
    Script,
    ScriptScene,
    StoryAnalysis,
    Storyboard,
    StoryboardScene,
    VideoProject,
)

logger = logging.getLogger(__name__)


async def init_database(bind: AsyncEngine | None = None) -> None:
    """Initialize database schema on first run."""
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema ready")


async def check_connection(bind: AsyncEngine | None = None) -> bool:
    """Return True if a trivial query succeeds against the datastore."""
    try:
        async with (bind or engine).connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning(f"Database connectivity check failed: {type(e).__name__}: {e}")
        return False


__all__ = [
    "Base",
    "engine",
    "async_session",
    "build_engine",
    "build_sessionmaker",
    "get_session",
    "shutdown",
    "init_database",
    "check_connection",
    "VideoProject",
    "StoryAnalysis",
    "Script",
    "ScriptScene",
    "Storyboard",
    "StoryboardScene",
    "Asset",
    "RenderedVideo",
    "CostEntry",
    "GenerationCacheEntry",
]
