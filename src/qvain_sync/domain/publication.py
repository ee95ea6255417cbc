"""Publish a local dataset to the registry.

Publication stores the dataset in the registry, writes the registry's answer
back to the local row and, if the registry forked a new version while
storing, fetches that version and stores it as a new local dataset linked to
the original.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import UTC, datetime
from logging import getLogger
from typing import TYPE_CHECKING

from qvain_sync.domain.errors import (
    DeadlineExceededError,
    EmptyDatasetError,
    NoIdentifierError,
    RecordDecodeError,
)
from qvain_sync.domain.model import new_id

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from datetime import timedelta
    from uuid import UUID

    from qvain_sync.domain.model import StoredRecord
    from qvain_sync.domain.ports.registry import RegistryGateway
    from qvain_sync.domain.ports.unit_of_work import DatasetUnitOfWork

log = getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True, slots=True)
class PublishResult:
    registry_id: str
    new_version_registry_id: str | None = None
    new_version_local_id: UUID | None = None

    @property
    def forked(self) -> bool:
        return self.new_version_registry_id is not None


def publish(
    registry: RegistryGateway,
    *,
    unit_of_work_factory: Callable[[], DatasetUnitOfWork],
    dataset_id: UUID,
    owner: UUID,
    timeout: timedelta,
    clock: Callable[[], datetime] = _utcnow,
) -> PublishResult:
    """Publish ``dataset_id`` on behalf of ``owner``.

    Raises:
        NotFoundError: the dataset doesn't exist, or the original vanished
            before a forked version could be stored.
        NotOwnerError: ``owner`` doesn't own the dataset.
        EmptyDatasetError: the dataset has no content.
        RegistryError: the registry refused the dataset or didn't answer.
        ProtocolError: the registry's answer lacks an identifier or JSON body.
    """
    return asyncio.run(
        publish_async(
            registry,
            unit_of_work_factory=unit_of_work_factory,
            dataset_id=dataset_id,
            owner=owner,
            timeout=timeout,
            clock=clock,
        )
    )


async def publish_async(
    registry: RegistryGateway,
    *,
    unit_of_work_factory: Callable[[], DatasetUnitOfWork],
    dataset_id: UUID,
    owner: UUID,
    timeout: timedelta,
    clock: Callable[[], datetime] = _utcnow,
) -> PublishResult:
    deadline = asyncio.get_running_loop().time() + timeout.total_seconds()

    with unit_of_work_factory() as uow:
        dataset = uow.repositories.datasets.get_with_owner(dataset_id, owner)
        blob = dataset.blob
    if not blob:
        raise EmptyDatasetError()

    stored = await _with_deadline(registry.store(blob), deadline)
    if stored is None:
        raise NoIdentifierError()
    record = _parse_stored(registry, stored)
    if record.identifier is None:
        raise NoIdentifierError()

    synced = record.modified
    if synced is None:
        synced = clock()
        log.warning(
            "registry returned no modification time for %s, using current time",
            record.identifier,
        )

    with unit_of_work_factory() as uow:
        uow.repositories.datasets.store_published(dataset_id, stored, synced=synced)
        uow.commit()
    log.info("published dataset %s as %s", dataset_id, record.identifier)

    new_version = record.new_version_identifier
    if new_version is None:
        return PublishResult(registry_id=record.identifier)

    # The registry forked a new version; it becomes a separate local dataset.
    version_blob = await _with_deadline(registry.get(new_version), deadline)
    created = _created_at(registry, version_blob) or clock()
    version_id = new_id()
    with unit_of_work_factory() as uow:
        uow.repositories.datasets.store_new_version(
            dataset_id, version_id, created=created, blob=version_blob
        )
        uow.commit()
    log.info(
        "registry created new version %s of %s, stored as %s",
        new_version,
        record.identifier,
        version_id,
    )
    return PublishResult(
        registry_id=record.identifier,
        new_version_registry_id=new_version,
        new_version_local_id=version_id,
    )


async def _with_deadline[T](awaitable: Awaitable[T], deadline: float) -> T:
    try:
        async with asyncio.timeout_at(deadline):
            return await awaitable
    except TimeoutError as exc:
        raise DeadlineExceededError("registry did not answer before the deadline") from exc


def _parse_stored(registry: RegistryGateway, data: bytes) -> StoredRecord:
    try:
        return registry.parse_store_response(data)
    except RecordDecodeError as exc:
        raise NoIdentifierError() from exc


def _created_at(registry: RegistryGateway, data: bytes) -> datetime | None:
    try:
        return registry.parse_record(data).date_created
    except RecordDecodeError:
        log.warning("can't decode new version returned by the registry")
        return None
