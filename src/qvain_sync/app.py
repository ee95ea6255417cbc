"""Application orchestration entry points."""

from __future__ import annotations

from collections.abc import Callable
from logging import getLogger
from typing import TYPE_CHECKING

from qvain_sync.adapters.metax import MetaxClient
from qvain_sync.adapters.sqlalchemy.unit_of_work import (
    SqlAlchemyBatchTransaction,
    SqlAlchemyDatasetUnitOfWork,
    is_started,
    startup,
)
from qvain_sync.config import get_sync_config
from qvain_sync.domain.ports.unit_of_work import BatchTransaction, DatasetUnitOfWork
from qvain_sync.domain.publication import PublishResult, publish
from qvain_sync.domain.retry_gate import RetryGate
from qvain_sync.domain.synchronization import SyncResult, fetch, fetch_all, fetch_since

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID

    from qvain_sync.config import SyncConfig
    from qvain_sync.domain.ports.registry import RegistryGateway

UnitOfWorkFactory = Callable[[], DatasetUnitOfWork]
BatchFactory = Callable[["UUID"], BatchTransaction]


log = getLogger(__name__)


def _ensure_started() -> None:
    if not is_started():
        startup()


def _batch_factory(uid: UUID) -> BatchTransaction:
    return SqlAlchemyBatchTransaction(trigger_uid=uid)


def fetch_datasets(
    uid: UUID,
    *,
    identity: str | None = None,
    registry: RegistryGateway | None = None,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
    batch_factory: BatchFactory | None = None,
    config: SyncConfig | None = None,
) -> SyncResult:
    """Synchronise the user's datasets unless the last pass was too recent."""

    _ensure_started()
    sync = config or get_sync_config()
    result = fetch(
        registry or MetaxClient(sync=sync),
        batch_factory=batch_factory or _batch_factory,
        unit_of_work_factory=unit_of_work_factory or SqlAlchemyDatasetUnitOfWork,
        gate=RetryGate(sync.retry_interval),
        uid=uid,
        identity=identity,
        timeout=sync.request_timeout,
    )
    _log_result(result)
    return result


def fetch_datasets_since(
    uid: UUID,
    since: datetime,
    *,
    identity: str | None = None,
    registry: RegistryGateway | None = None,
    batch_factory: BatchFactory | None = None,
    config: SyncConfig | None = None,
) -> SyncResult:
    """Synchronise the user's datasets modified since ``since``."""

    _ensure_started()
    sync = config or get_sync_config()
    log.info("Starting sync since %s for user %s", since, uid)
    result = fetch_since(
        registry or MetaxClient(sync=sync),
        batch_factory=batch_factory or _batch_factory,
        uid=uid,
        identity=identity,
        since=since,
        timeout=sync.request_timeout,
    )
    _log_result(result)
    return result


def fetch_all_datasets(
    uid: UUID,
    *,
    identity: str | None = None,
    registry: RegistryGateway | None = None,
    batch_factory: BatchFactory | None = None,
    config: SyncConfig | None = None,
) -> SyncResult:
    """Resynchronise every dataset of the user."""

    _ensure_started()
    sync = config or get_sync_config()
    result = fetch_all(
        registry or MetaxClient(sync=sync),
        batch_factory=batch_factory or _batch_factory,
        uid=uid,
        identity=identity,
        timeout=sync.request_timeout,
    )
    _log_result(result)
    return result


def publish_dataset(
    dataset_id: UUID,
    owner: UUID,
    *,
    registry: RegistryGateway | None = None,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
    config: SyncConfig | None = None,
) -> PublishResult:
    """Publish a local dataset to Metax."""

    _ensure_started()
    sync = config or get_sync_config()
    result = publish(
        registry or MetaxClient(sync=sync),
        unit_of_work_factory=unit_of_work_factory or SqlAlchemyDatasetUnitOfWork,
        dataset_id=dataset_id,
        owner=owner,
        timeout=sync.publish_timeout,
    )
    log.info(
        f"Finished publish: registry_id={result.registry_id}, "
        f"new_version={result.new_version_registry_id}, "
        f"new_local_id={result.new_version_local_id}"
    )
    return result


def _log_result(result: SyncResult) -> None:
    log.info(
        f"Finished sync {result.sync_id}: read={result.read}, created={result.created}, "
        f"updated={result.updated}, unchanged={result.unchanged}, skipped={result.skipped}"
    )
