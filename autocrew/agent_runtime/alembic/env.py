"""Alembic migration environment.

Reads the database URL from AutocrewSettings (AUTOCREW_DATABASE_URL env var)
and runs migrations synchronously using psycopg3.
"""

from __future__ import annotations

from logging.config import fileConfig
from typing import Any

from alembic import context
from sqlalchemy import create_engine, pool

from autocrew.agent_runtime.db.engine import normalize_url
from autocrew.agent_runtime.db.tables import Base
from autocrew.agent_runtime.settings import AutocrewSettings

# -- Alembic Config object ----------------------------------------------------
config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name, disable_existing_loggers=False)

# -- Target metadata for autogenerate ----------------------------------------
target_metadata = Base.metadata


def get_url() -> str:
    """Return the psycopg3 database URL.

    An explicit ``sqlalchemy.url`` on the Config (tests) wins over settings.
    """
    url = config.get_main_option("sqlalchemy.url") or AutocrewSettings().database_url
    if not url:
        msg = "AUTOCREW_DATABASE_URL is not set. Cannot run migrations."
        raise RuntimeError(msg)
    return normalize_url(url)


def include_object(obj: Any, name: str | None, type_: str, reflected: bool, compare_to: Any) -> bool:
    """Skip tables that exist in the database but not in our models."""
    return not (type_ == "table" and reflected and compare_to is None)


def run_migrations_offline() -> None:
    """Generate SQL scripts without connecting to the database."""
    context.configure(
        url=get_url(),
        target_metadata=target_metadata,
        include_object=include_object,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = create_engine(get_url(), poolclass=pool.NullPool)

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            include_object=include_object,
            compare_type=True,
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
