"""Reconcile a user's datasets in the registry with the local store.

One reconciliation pass streams the user's records from the registry, links
each to a local dataset and stages the resulting writes in a single batch
transaction. The batch commits only when the registry finished the stream;
a stream failure or an expired deadline rolls every staged write back.
Individual records that can't be decoded or stored are skipped.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from logging import Logger, LoggerAdapter, getLogger
from typing import TYPE_CHECKING, Any

from qvain_sync.domain.errors import (
    LinkingError,
    NotFoundError,
    RecordDecodeError,
    RegistryError,
    StorageError,
)
from qvain_sync.domain.linking import LocalIndex, classify
from qvain_sync.domain.model import METAX_FAMILY, Dataset, RegistryQuery, schema_for_catalog

if TYPE_CHECKING:
    from collections.abc import Callable, MutableMapping
    from datetime import datetime, timedelta
    from uuid import UUID

    from qvain_sync.domain.model import RawRecord, RecordView
    from qvain_sync.domain.ports.registry import RegistryGateway
    from qvain_sync.domain.ports.unit_of_work import BatchTransaction, DatasetUnitOfWork
    from qvain_sync.domain.retry_gate import RetryGate

type BatchFactory = Callable[[UUID], BatchTransaction]

log = getLogger(__name__)


class SyncLogAdapter(LoggerAdapter[Logger]):
    """Prefixes every message with the pass's correlation id."""

    def process(
        self,
        msg: Any,
        kwargs: MutableMapping[str, Any],
    ) -> tuple[Any, MutableMapping[str, Any]]:
        extra = self.extra or {}
        return f"[sync {extra.get('sync_id')}] {msg}", kwargs


@dataclass(slots=True)
class SyncResult:
    """Outcome of one committed reconciliation pass."""

    sync_id: str
    expected: int | None = None
    read: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0

    @property
    def written(self) -> int:
        return self.created + self.updated


def new_sync_id() -> str:
    return uuid.uuid4().hex[:20]


def fetch(
    registry: RegistryGateway,
    *,
    batch_factory: BatchFactory,
    unit_of_work_factory: Callable[[], DatasetUnitOfWork],
    gate: RetryGate,
    uid: UUID,
    identity: str | None = None,
    timeout: timedelta,
) -> SyncResult:
    """Run a pass unless the user synced within the gate's interval.

    Only records modified since the last successful pass are requested.

    Raises:
        TooSoonError: the previous pass is too recent.
    """
    since = gate.check_user(uid, unit_of_work_factory)
    return asyncio.run(
        reconcile(
            registry,
            batch_factory=batch_factory,
            uid=uid,
            identity=identity,
            since=since,
            timeout=timeout,
        )
    )


def fetch_since(
    registry: RegistryGateway,
    *,
    batch_factory: BatchFactory,
    uid: UUID,
    identity: str | None = None,
    since: datetime,
    timeout: timedelta,
) -> SyncResult:
    """Run a pass for records modified since an explicit lower bound."""
    return asyncio.run(
        reconcile(
            registry,
            batch_factory=batch_factory,
            uid=uid,
            identity=identity,
            since=since,
            timeout=timeout,
        )
    )


def fetch_all(
    registry: RegistryGateway,
    *,
    batch_factory: BatchFactory,
    uid: UUID,
    identity: str | None = None,
    timeout: timedelta,
) -> SyncResult:
    """Run a full resync of all the user's records."""
    return asyncio.run(
        reconcile(
            registry,
            batch_factory=batch_factory,
            uid=uid,
            identity=identity,
            since=None,
            timeout=timeout,
        )
    )


async def reconcile(
    registry: RegistryGateway,
    *,
    batch_factory: BatchFactory,
    uid: UUID,
    identity: str | None,
    since: datetime | None,
    timeout: timedelta,
) -> SyncResult:
    """Run one reconciliation pass inside the running event loop."""
    query = RegistryQuery.for_user(str(uid), identity, since=since)
    result = SyncResult(sync_id=new_sync_id())
    logger = SyncLogAdapter(log, {"sync_id": result.sync_id})

    with batch_factory(uid) as batch:
        index = LocalIndex.build(batch.repositories.datasets.list_for_owner(uid))
        async with registry.open_stream(query, timeout=timeout) as stream:
            result.expected = stream.expected_count
            logger.info(
                "starting sync: user=%s identity=%s total=%s",
                uid,
                identity,
                result.expected,
            )
            try:
                async for raw in stream:
                    result.read += 1
                    _stage_record(
                        raw,
                        registry=registry,
                        batch=batch,
                        index=index,
                        uid=uid,
                        result=result,
                        logger=logger,
                    )
            except RegistryError as exc:
                logger.info("sync aborted after %d records: %s", result.read, exc)
                raise
        batch.commit()

    logger.info(
        "successful sync: total=%s read=%d written=%d unchanged=%d skipped=%d",
        result.expected,
        result.read,
        result.written,
        result.unchanged,
        result.skipped,
    )
    return result


def _stage_record(
    raw: RawRecord,
    *,
    registry: RegistryGateway,
    batch: BatchTransaction,
    index: LocalIndex,
    uid: UUID,
    result: SyncResult,
    logger: SyncLogAdapter,
) -> None:
    try:
        record = registry.parse_record(raw.data)
        schema = schema_for_catalog(record.catalog_identifier)
        if schema is None:
            raise RecordDecodeError(
                f"unknown or missing data catalog: {record.catalog_identifier!r}"
            )
        decision = classify(record, index)
        if decision.local_id is None:
            _stage_new(raw, record, schema=schema, batch=batch, index=index, uid=uid)
            result.created += 1
            logger.debug("batched new dataset %s", record.identifier)
        elif _stage_existing(raw, record, decision.local_id, batch=batch, index=index):
            result.updated += 1
            logger.debug("batched update of dataset %s", decision.local_id)
        else:
            result.unchanged += 1
            logger.debug("dataset %s unchanged, advanced synced", decision.local_id)
    except (LinkingError, StorageError) as exc:
        result.skipped += 1
        logger.debug("skipping record %d: %s", result.read, exc)


def _stage_new(
    raw: RawRecord,
    record: RecordView,
    *,
    schema: str,
    batch: BatchTransaction,
    index: LocalIndex,
    uid: UUID,
) -> None:
    # Records originating from the registry are complete and already public.
    dataset = Dataset(
        creator=uid,
        owner=uid,
        created=record.date_created or batch.started_at,
        synced=record.modification_time or batch.started_at,
        published=True,
        valid=True,
        family=METAX_FAMILY,
        schema=schema,
        blob=raw.data,
    )
    batch.stage_create(dataset)
    index.remember(record.identifier, dataset.id, dataset.synced)


def _stage_existing(
    raw: RawRecord,
    record: RecordView,
    local_id: UUID,
    *,
    batch: BatchTransaction,
    index: LocalIndex,
) -> bool:
    """Stage an update of ``local_id``; return whether the blob was written."""
    if not index.knows(local_id):
        raise NotFoundError(f"dataset {local_id} is not owned by the syncing user")

    synced = index.synced_at(local_id)
    modified = record.modification_time
    if modified is None:
        # Undated records are compared by content.
        unchanged = batch.repositories.datasets.get(local_id).blob == raw.data
    else:
        unchanged = synced is not None and modified <= synced
    if unchanged:
        batch.stage_synced(local_id)
        index.mark_synced(local_id, batch.started_at)
        return False

    batch.stage_update(local_id, raw.data, synced=modified)
    index.mark_synced(local_id, batch.started_at)
    if modified is not None:
        index.mark_synced(local_id, modified)
    return True
