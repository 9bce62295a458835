"""
Database engine and session management using SQLAlchemy 2.x (async).
Provides the declarative base and session factory for the application.
"""
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from carenow.lib.settings import settings


# Base class for all SQLAlchemy models
class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


def get_engine(database_url: str = settings.database_url) -> AsyncEngine:
    """Create an async engine for the given URL."""
    return create_async_engine(
        database_url,
        echo=settings.debug,
        pool_pre_ping=True,  # Verify connections before using
    )


def get_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to an engine."""
    return async_sessionmaker(
        bind=engine,
        autoflush=False,
        expire_on_commit=False,
    )


engine = get_engine()
SessionLocal = get_session_factory(engine)


async def init_db(bind: AsyncEngine = engine) -> None:
    """
    Create all tables.
    Should be called after all models are imported.
    """
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_db(bind: AsyncEngine = engine) -> None:
    """
    Drop all tables. Use with caution, this removes all booking data.
    """
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
