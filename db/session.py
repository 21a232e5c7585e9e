"""
db/session.py: Database Connection & Session Management
=========================================================
Handles the async database connection using SQLAlchemy.
Called by main.py on startup via init_db().

Route handlers use get_db() as a FastAPI dependency; job processors open
their own sessions through session_scope().
"""

from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool
from config import settings
import logging

logger = logging.getLogger("deedchain.db")

# Convert standard postgres:// URL to async postgresql+asyncpg://
DATABASE_URL = settings.DATABASE_URL.replace(
    "postgresql://", "postgresql+asyncpg://"
)


def _engine_options(url: str) -> dict:
    # SQLite connections are tied to the event loop that opened them
    if url.startswith("sqlite"):
        return {"poolclass": NullPool}
    return {
        "pool_size": settings.DB_POOL_SIZE,
        "max_overflow": settings.DB_MAX_OVERFLOW,
        "pool_pre_ping": True,
    }


# Create async engine
engine = create_async_engine(
    DATABASE_URL,
    echo=settings.DEBUG,   # logs all SQL in debug mode
    **_engine_options(DATABASE_URL),
)

# Session factory
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Base class all database models inherit from."""
    pass


async def init_db():
    """Create all tables on startup if they don't exist."""
    from db.models import User, Property, Verification, Transfer  # noqa: F401
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created / verified.")


async def reset_db():
    """Drop and recreate every table. Used by the test suite."""
    from db import models  # noqa: F401
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)


async def ping_db() -> str:
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
    return "healthy"


async def get_db():
    """
    FastAPI dependency: yields a DB session per request.

    Usage in any route:
        from db.session import get_db
        from sqlalchemy.ext.asyncio import AsyncSession

        async def my_endpoint(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def session_scope():
    """Same commit / rollback contract as get_db(), for code outside a request."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
