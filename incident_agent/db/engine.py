"""SQLAlchemy async engine, session factory and error translation."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from incident_agent.db.models import Base


class StoreUnavailableError(Exception):
    """The database could not be reached; transient and safe to retry."""


def create_engine_from_url(database_url: str, *, echo: bool = False) -> AsyncEngine:
    return create_async_engine(
        database_url,
        echo=echo,
        pool_pre_ping=True,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def init_models(engine: AsyncEngine) -> None:
    """Create tables (in production, use Alembic migrations instead)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@asynccontextmanager
async def session_scope(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    """Open a session, surfacing connectivity failures as StoreUnavailableError."""
    try:
        async with session_factory() as session:
            yield session
    except (OperationalError, InterfaceError) as exc:
        raise StoreUnavailableError(str(exc.orig or exc)) from exc
