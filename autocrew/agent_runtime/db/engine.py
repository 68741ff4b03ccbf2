"""Async SQLAlchemy engine and session factory.

Uses psycopg3 which supports both sync (Alembic) and async (runtime) with the
same ``postgresql+psycopg://`` URL.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine


def normalize_url(database_url: str) -> str:
    """Map common driver spellings onto the psycopg3 dialect."""
    for prefix in ("postgresql+asyncpg://", "postgresql://", "postgres://"):
        if database_url.startswith(prefix):
            return "postgresql+psycopg://" + database_url[len(prefix) :]
    return database_url


def create_engine(database_url: str, **kwargs: object) -> AsyncEngine:
    """Create an async SQLAlchemy engine.

    The tick loops, the log writers of every in-flight execution and the
    API all share this pool, so it is sized a little above the expected
    number of concurrent executions:

    - **pool_size=10** / **max_overflow=10**
    - **pool_pre_ping=True**: survive PG restarts and idle disconnects.
    - **pool_recycle=3600**: recycle connections hourly.

    All defaults can be overridden via *kwargs*.
    """
    defaults = {
        "echo": False,
        "pool_size": 10,
        "max_overflow": 10,
        "pool_pre_ping": True,
        "pool_recycle": 3600,
    }
    defaults.update(kwargs)  # type: ignore[arg-type]
    return create_async_engine(normalize_url(database_url), **defaults)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create an async session factory bound to *engine*.

    ``expire_on_commit=False`` keeps ORM instances readable after commit,
    which the store relies on when converting rows to domain models.
    """
    return async_sessionmaker(engine, expire_on_commit=False)
