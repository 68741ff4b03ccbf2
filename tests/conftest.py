"""Shared test fixtures: testcontainers for PostgreSQL.

Integration tests use a real PostgreSQL container managed by
testcontainers-python.  The container is session-scoped (started once per
test run).  Each test function gets a session factory bound to a single
connection whose outer transaction is rolled back at teardown.

Requires Docker to be available.  Tests needing the container should be
marked with ``@pytest.mark.integration``.
"""

from __future__ import annotations

import os
from collections.abc import AsyncIterator, Iterator
from pathlib import Path

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from testcontainers.postgres import PostgresContainer

from autocrew.agent_runtime.settings import _get_settings_cached


def _set_env(key: str, value: str) -> None:
    """Set an env var and invalidate the settings cache."""
    os.environ[key] = value
    _get_settings_cached.cache_clear()


# ---------------------------------------------------------------------------
# Session-scoped: container (started once, shared across all tests)
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def pg_container() -> Iterator[PostgresContainer]:
    """Start a PostgreSQL 17 container for the test session."""
    with PostgresContainer(
        image="postgres:17",
        username="test",
        password="test",
        dbname="autocrew_test",
        driver="psycopg",
    ) as pg:
        yield pg


@pytest.fixture(scope="session")
def pg_url(pg_container: PostgresContainer) -> str:
    """PostgreSQL URL (psycopg3 dialect) with Alembic migrations applied."""
    url = pg_container.get_connection_url()
    _set_env("AUTOCREW_DATABASE_URL", url)

    # Apply all migrations using the packaged alembic.ini (same config as CLI).
    from alembic import command
    from alembic.config import Config

    ini_path = Path(__file__).parent.parent / "autocrew" / "agent_runtime" / "alembic.ini"
    cfg = Config(str(ini_path))
    command.upgrade(cfg, "head")

    return url


@pytest.fixture(scope="session")
def async_engine(pg_url: str) -> Iterator[AsyncEngine]:
    """Session-scoped async SQLAlchemy engine."""
    engine = create_async_engine(pg_url)
    yield engine
    engine.sync_engine.dispose()


# ---------------------------------------------------------------------------
# Function-scoped: savepoint-isolated session factory
# ---------------------------------------------------------------------------


@pytest.fixture
async def session_factory(async_engine: AsyncEngine) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    """Session factory whose commits only release savepoints.

    ``SqlDispatchStore`` opens a fresh session per call; binding every one of
    them to the same connection with ``join_transaction_mode="create_savepoint"``
    lets the outer transaction be rolled back at teardown, giving each test a
    clean database state.
    """
    async with async_engine.connect() as conn:
        await conn.begin()
        yield async_sessionmaker(bind=conn, expire_on_commit=False, join_transaction_mode="create_savepoint")
        await conn.rollback()
