"""Async engine and session factory."""

import logging
from pathlib import Path

from sqlalchemy import func, select
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from catalog_crawler.config import Settings
from catalog_crawler.db.models import Base, Product

logger = logging.getLogger(__name__)


def ensure_sqlite_directory(database_url: str) -> None:
    """Create the parent directory of a file-backed SQLite database."""
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)


def create_engine(settings: Settings) -> AsyncEngine:
    """Create the async engine for `settings.database_url`."""
    ensure_sqlite_directory(settings.database_url)
    return create_async_engine(settings.database_url, echo=settings.db_echo)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_models(engine: AsyncEngine) -> None:
    """Create all tables that do not exist yet."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables ready")


async def count_products_by_category(
    session_factory: async_sessionmaker[AsyncSession],
) -> dict[str, int]:
    """Stored row count per category."""
    async with session_factory() as db:
        result = await db.execute(
            select(Product.category, func.count(Product.id)).group_by(Product.category)
        )
        return {category: count for category, count in result.all()}


async def count_products(
    session_factory: async_sessionmaker[AsyncSession],
    category: str,
) -> int:
    """Stored row count for one category."""
    async with session_factory() as db:
        result = await db.execute(
            select(func.count(Product.id)).where(Product.category == category)
        )
        return result.scalar_one()
