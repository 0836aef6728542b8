# app/db/database.py
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from typing import AsyncGenerator

from app.core.config import settings


def build_engine(database_url: str, echo: bool = False):
    """Create the async engine; pool sizing only applies to server databases"""
    url = database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    kwargs = {"echo": echo}
    if not url.startswith("sqlite"):
        kwargs.update(
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_pre_ping=True,
        )
    return create_async_engine(url, **kwargs)


engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG)

# Create async session factory
async_session_local = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Database session dependency"""
    async with async_session_local() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db(bind=None):
    """Initialize database (create tables, seed the product catalog)"""
    from app.db.base import Base
    # Import all models to ensure they're registered
    from app.db import models  # noqa: F401
    from app.db.seed import seed_products

    bind = bind or engine
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        await seed_products(session)


async def close_db():
    """Close database connections"""
    await engine.dispose()
