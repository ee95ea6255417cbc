"""Domain port definitions for adapters."""

from __future__ import annotations

from .persistence import DatasetRepository, SyncStampRepository
from .registry import RecordStream, RegistryGateway
from .unit_of_work import (
    BatchTransaction,
    DatasetRepositories,
    DatasetUnitOfWork,
    RepositoryCollection,
    UnitOfWork,
)

__all__ = [
    "BatchTransaction",
    "DatasetRepositories",
    "DatasetRepository",
    "DatasetUnitOfWork",
    "RecordStream",
    "RegistryGateway",
    "RepositoryCollection",
    "SyncStampRepository",
    "UnitOfWork",
]
