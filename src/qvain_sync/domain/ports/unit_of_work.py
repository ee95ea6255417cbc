"""Unit-of-work abstractions for coordinating repositories."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from datetime import datetime
    from types import TracebackType
    from uuid import UUID

    from qvain_sync.domain.model import Dataset
    from qvain_sync.domain.ports.persistence import DatasetRepository, SyncStampRepository


@runtime_checkable
class RepositoryCollection(Protocol):
    """Marker protocol for groups of repositories managed together."""


@runtime_checkable
class UnitOfWork[TRepositories: RepositoryCollection](Protocol):
    """Generic unit-of-work boundary around a repository collection."""

    @property
    def repositories(self) -> TRepositories: ...

    def __enter__(self) -> UnitOfWork[TRepositories]: ...

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> bool: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...


@dataclass(slots=True)
class DatasetRepositories(RepositoryCollection):
    """Repositories required to read and write datasets."""

    datasets: DatasetRepository
    sync_stamps: SyncStampRepository


type DatasetUnitOfWork = UnitOfWork[DatasetRepositories]


@runtime_checkable
class BatchTransaction(Protocol):
    """One local transaction backing a whole reconciliation pass.

    Staged creates are inserted immediately inside the open transaction. A
    failed staging call leaves earlier staged writes intact. ``commit`` writes
    the trigger user's last-sync stamp before committing; ``rollback`` is a
    no-op once committed.
    """

    @property
    def started_at(self) -> datetime: ...

    @property
    def repositories(self) -> DatasetRepositories: ...

    def __enter__(self) -> BatchTransaction: ...

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> bool: ...

    def stage_create(self, dataset: Dataset) -> None: ...

    def stage_update(
        self,
        dataset_id: UUID,
        blob: bytes,
        *,
        synced: datetime | None = None,
    ) -> None: ...

    def stage_synced(self, dataset_id: UUID) -> None: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...
