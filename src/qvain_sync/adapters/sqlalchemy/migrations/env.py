"""Alembic runtime environment for the dataset store."""

from __future__ import annotations

from logging.config import fileConfig
from pathlib import Path
from typing import Any

from alembic import context
from sqlalchemy import pool

from qvain_sync.adapters.sqlalchemy.mappings import mapper_registry, start_mappers
from qvain_sync.adapters.sqlalchemy.unit_of_work import create_database_engine
from qvain_sync.config import get_database_config

config = context.config
if config.config_file_name is not None and Path(config.config_file_name).suffix == ".ini":
    fileConfig(config.config_file_name)

start_mappers()
target_metadata = mapper_registry.metadata


def _database_url() -> str:
    return config.get_main_option("sqlalchemy.url") or get_database_config().uri


def _migrate(**options: Any) -> None:
    context.configure(
        target_metadata=target_metadata,
        render_as_batch=True,
        compare_type=True,
        **options,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_offline() -> None:
    """Emit the migration SQL without a database connection."""
    _migrate(url=_database_url(), literal_binds=True)


def run_online() -> None:
    """Apply migrations on the caller's connection or a fresh engine."""
    shared = config.attributes.get("connection")
    if shared is not None:
        _migrate(connection=shared)
        return

    engine = create_database_engine(_database_url(), poolclass=pool.NullPool)
    try:
        with engine.connect() as connection:
            _migrate(connection=connection)
    finally:
        engine.dispose()


if context.is_offline_mode():
    run_offline()
else:
    run_online()
