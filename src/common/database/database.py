# src/common/database/database.py

import logging
from typing import AsyncGenerator
from fastapi import Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from src.common.config import settings

logger = logging.getLogger(__name__)


def _connect_args(url: str) -> dict:
    # command_timeout is an asyncpg connect argument
    if url.startswith("postgresql+asyncpg"):
        return {"command_timeout": settings.DB_COMMAND_TIMEOUT_SECONDS}
    return {}


# SQLAlchemy async engine and session setup
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    future=True,
    pool_pre_ping=True,
    pool_recycle=1800,
    connect_args=_connect_args(settings.DATABASE_URL),
)

async_session = sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


async def connect_to_db():
    """Connect to the database."""
    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("Database connected successfully")
    except Exception:
        logger.exception("Error connecting to the database")
        raise


async def close_db_connection():
    """Close the database connection."""
    await engine.dispose()
    logger.info("Database connection closed")


def get_session_factory() -> sessionmaker:
    """Session factory used by request sessions and the best-effort log writers."""
    return async_session


# Dependency for using a session in routes
async def get_db_session(
    session_factory: sessionmaker = Depends(get_session_factory),
) -> AsyncGenerator[AsyncSession, None]:
    """Yield a database session for use in FastAPI routes."""
    async with session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
