# citydash/core/db.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import MetaData
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from citydash.core.config import settings

# Naming convention is strongly recommended for Alembic compatibility
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

logger = logging.getLogger(__name__)


def create_engine(url: str | None = None) -> AsyncEngine:
    url = url or settings.database_url
    logger.info("Creating async DB engine (%s)", url.split("://", 1)[0])
    if url.startswith("sqlite"):
        # One shared connection so in-memory databases survive across sessions
        return create_async_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    return create_async_engine(
        url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        pool_pre_ping=True,
    )


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        expire_on_commit=False,
        autoflush=False,
    )


@asynccontextmanager
async def session_scope(
    sessionmaker: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    """Session that commits on success and rolls back on any error."""
    async with sessionmaker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            logger.debug("DB transaction rolled back")
            raise


async def init_db(engine: AsyncEngine) -> None:
    """Create tables. In production prefer Alembic migrations."""
    # Import models to register them in metadata
    import citydash.core.store.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("DB initialized (create_all)")


class Base(DeclarativeBase):
    """Shared declarative base; one metadata with the naming convention."""

    metadata = MetaData(
        schema=settings.database_schema,
        naming_convention=NAMING_CONVENTION,
    )
