"""Ports for persisting datasets and sync bookkeeping."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime
    from uuid import UUID

    from qvain_sync.domain.model import Dataset


@runtime_checkable
class DatasetRepository(Protocol):
    """Persistence contract for locally owned datasets."""

    def get(self, dataset_id: UUID) -> Dataset: ...

    def get_with_owner(self, dataset_id: UUID, owner: UUID) -> Dataset: ...

    def list_for_owner(self, owner: UUID) -> Sequence[Dataset]: ...

    def create(self, dataset: Dataset) -> None: ...

    def create_with_metadata(self, dataset: Dataset) -> None: ...

    def update_by_service(
        self,
        dataset_id: UUID,
        blob: bytes,
        *,
        at: datetime,
        synced: datetime | None = None,
    ) -> None: ...

    def update_synced(self, dataset_id: UUID, *, at: datetime) -> None: ...

    def store_published(self, dataset_id: UUID, blob: bytes, *, synced: datetime) -> None: ...

    def store_new_version(
        self,
        based_on: UUID,
        dataset_id: UUID,
        *,
        created: datetime,
        blob: bytes,
    ) -> Dataset: ...


@runtime_checkable
class SyncStampRepository(Protocol):
    """Per-user record of the last successful reconciliation pass."""

    def get_last_sync(self, uid: UUID) -> datetime | None: ...

    def write_stamp(self, uid: UUID, at: datetime, *, success: bool = True) -> None: ...
