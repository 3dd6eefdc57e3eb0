"""Alembic environment for the sync tables (crosswalk, shadow, conflicts, log, state, lock)."""

from __future__ import annotations

from logging.config import fileConfig
from pathlib import Path
from typing import TYPE_CHECKING

from alembic import context
from sqlalchemy import create_engine, pool

from subsync.adapters.sqlalchemy.mappings import mapper_registry, start_mappers
from subsync.config.storage import get_database_uri

if TYPE_CHECKING:
    from sqlalchemy.engine import Connection

config = context.config

if config.config_file_name is not None and Path(config.config_file_name).suffix == ".ini":
    fileConfig(config.config_file_name)

start_mappers()
target_metadata = mapper_registry.metadata

# SQLite cannot ALTER most constraints, so every revision runs in batch mode
_CONFIGURE_OPTIONS: dict[str, object] = {"render_as_batch": True, "compare_type": True}


def _database_url() -> str:
    return config.get_main_option("sqlalchemy.url") or get_database_uri()


def _migrate(connection: Connection) -> None:
    context.configure(connection=connection, target_metadata=target_metadata, **_CONFIGURE_OPTIONS)
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_offline() -> None:
    context.configure(
        url=_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        **_CONFIGURE_OPTIONS,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Reuse the connection handed over by ``upgrade_head(engine=...)`` when present."""

    shared = config.attributes.get("connection")
    if shared is not None:
        _migrate(shared)
        return

    engine = create_engine(_database_url(), poolclass=pool.NullPool, future=True)
    try:
        with engine.connect() as connection:
            _migrate(connection)
    finally:
        engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
