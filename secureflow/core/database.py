"""Database configuration and session management"""
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

from secureflow.core.config import settings

# Declarative base for models
Base = declarative_base()


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    """
    Create an async engine for `url`.

    In-memory SQLite needs a single shared connection, otherwise every
    session would see its own empty database.
    """
    if url.startswith("sqlite") and ":memory:" in url:
        return create_async_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_async_engine(url, echo=echo, future=True, pool_pre_ping=True)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


# Create async engine
engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG)

# Create async session factory
AsyncSessionLocal = build_session_factory(engine)


async def create_tables(bind: AsyncEngine = engine) -> None:
    """
    Create all database tables based on SQLAlchemy models.
    Called during application startup.
    """
    # Import models so they register on Base.metadata
    import secureflow.models  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_tables(bind: AsyncEngine = engine) -> None:
    """
    Drop all database tables.
    Useful for testing and cleanup.
    """
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
