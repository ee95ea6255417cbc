"""SQLAlchemy adapter package for qvain-sync."""

from __future__ import annotations

from .mappings import dataset_table, last_sync_table, mapper_registry, start_mappers
from .repositories import SqlAlchemyDatasetRepository, SqlAlchemySyncStampRepository
from .unit_of_work import (
    SqlAlchemyBatchTransaction,
    SqlAlchemyDatasetUnitOfWork,
    create_database_engine,
    shutdown,
    startup,
)

__all__ = [
    "SqlAlchemyBatchTransaction",
    "SqlAlchemyDatasetRepository",
    "SqlAlchemyDatasetUnitOfWork",
    "SqlAlchemySyncStampRepository",
    "create_database_engine",
    "dataset_table",
    "last_sync_table",
    "mapper_registry",
    "shutdown",
    "start_mappers",
    "startup",
]
