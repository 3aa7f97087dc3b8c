"""Database engine and sessions.

SQLite (aiosqlite) serves dev and tests, PostgreSQL (asyncpg) production; both
go through the same engine settings. Sessions keep loaded attributes after
commit so route handlers can serialize rows they just wrote.
"""
from collections.abc import AsyncGenerator
import logging

from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from giftregistry.core.config import settings

logger = logging.getLogger("giftregistry.db")

engine = create_async_engine(settings.postgres_dsn, pool_pre_ping=True)

async_session_factory = async_sessionmaker(
    bind=engine,
    expire_on_commit=False,
    autoflush=False,
)


class Base(DeclarativeBase):
    pass


def describe_database(dsn: str | None = None) -> dict[str, str | None]:
    """Driver, host and database name of ``dsn`` without credentials."""
    try:
        url = make_url(dsn or settings.postgres_dsn)
    except ArgumentError:
        return {"driver": None, "host": None, "database": None}
    return {"driver": url.get_backend_name(), "host": url.host, "database": url.database}


async def create_schema() -> None:
    """Create missing tables for every registered model."""
    from giftregistry.models import models as _models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema ready tables=%s", len(Base.metadata.tables))


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
