"""
Async database session factory.

Uses SQLAlchemy 2.0 async engine with asyncpg (Postgres) or aiosqlite (dev/tests).
The engine is built once per process by the automation runtime (see
newsdesk/automation/runtime.py) and hung off app.state.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator  # noqa: TC003

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from newsdesk.core.config import Settings
from newsdesk.models.models import Base


def build_engine(settings: Settings) -> AsyncEngine:
    if settings.is_sqlite and ":memory:" in settings.database_url:
        # one shared connection, otherwise every checkout sees an empty database
        return create_async_engine(
            settings.database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_async_engine(
        settings.database_url,
        echo=False,
        pool_pre_ping=True,
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_models(engine: AsyncEngine) -> None:
    """Create missing tables. Production schemas are expected to be migrated ahead of time."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: yields an async DB session."""
    session_factory = request.app.state.runtime.session_factory
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
