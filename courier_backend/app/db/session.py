"""
Async engine, session factory and declarative base.

Services receive an ``AsyncSession`` per request from ``get_db`` and commit
explicitly; the notification worker opens its own sessions from
``AsyncSessionLocal``.
"""

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from courier_backend.app.core.config import settings

Base = declarative_base()


def build_engine(url: str, **options) -> AsyncEngine:
    """Create an engine for ``url``; pool sizing only applies to server databases."""
    if make_url(url).get_backend_name() != "sqlite":
        options.setdefault("pool_size", settings.db_pool_size)
        options.setdefault("max_overflow", settings.db_max_overflow)
        options.setdefault("pool_pre_ping", True)
    return create_async_engine(url, echo=settings.db_echo, **options)


engine = build_engine(settings.database_url)

# Objects stay usable after commit; services reload what they return.
AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


async def create_tables(bind: AsyncEngine = engine):
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db():
    """One session per request; uncommitted work is rolled back on close."""
    async with AsyncSessionLocal() as session:
        yield session
