"""
Async database configuration with SQLAlchemy.
Postgres (asyncpg) in production, SQLite (aiosqlite) for local dev and tests.
"""

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base

from .config import DATABASE_URL


def build_engine(url: str = DATABASE_URL, **kwargs):
    """Create an async engine; pool sizing only applies to server databases."""
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"timeout": 30})
    else:
        kwargs.setdefault("pool_size", 20)
        kwargs.setdefault("max_overflow", 30)
        kwargs.setdefault("pool_pre_ping", True)
        kwargs.setdefault("pool_recycle", 3600)
        kwargs.setdefault("connect_args", {
            "server_settings": {
                "application_name": "charter_booking"
            }
        })

    return create_async_engine(url, echo=False, **kwargs)


# Create async engine
engine = build_engine()

# Create async session factory
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False
)

# Base class for all models
Base = declarative_base()


# Dependency for FastAPI
async def get_session():
    async with async_session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db(bind=None):
    """Initialize database tables"""
    from . import models  # noqa: F401  registers tables on Base.metadata

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db():
    """Close database connections"""
    await engine.dispose()
