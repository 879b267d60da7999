"""SQLAlchemy async engine and session factory.

Both are built once by the application lifespan and kept on ``app.state``;
request handlers receive sessions through :func:`get_db`.
"""

from __future__ import annotations

from typing import AsyncIterator

from fastapi import Request
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from wasteops.config import Settings
from wasteops.db.models import Base


def _build_engine_kwargs(settings: Settings) -> dict:
    """Return engine kwargs appropriate for the configured dialect."""
    if settings.is_postgres:
        return {
            "echo": settings.DEBUG,
            "pool_size": settings.DB_POOL_SIZE,
            "max_overflow": settings.DB_MAX_OVERFLOW,
            "pool_timeout": settings.DB_POOL_TIMEOUT,
            "pool_pre_ping": True,   # recycle stale connections
            "pool_recycle": 1800,
        }
    return {
        "echo": settings.DEBUG,
        "connect_args": {"check_same_thread": False},
    }


def build_engine(settings: Settings) -> AsyncEngine:
    engine = create_async_engine(settings.DATABASE_URL, **_build_engine_kwargs(settings))

    if settings.is_sqlite:
        # SQLite ignores ON DELETE CASCADE unless foreign keys are switched on
        # per connection.
        @event.listens_for(engine.sync_engine, "connect")
        def _set_sqlite_pragmas(dbapi_conn, _conn_rec):  # type: ignore[misc]
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA busy_timeout=5000")
            cursor.close()

    return engine


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def create_schema(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
    """FastAPI dependency: yields a session and commits/rollbacks."""
    factory: async_sessionmaker[AsyncSession] = request.app.state.session_factory
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
