from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from qvain_sync.adapters.sqlalchemy import dataset_table
from qvain_sync.adapters.sqlalchemy.unit_of_work import (
    SqlAlchemyBatchTransaction,
    SqlAlchemyDatasetUnitOfWork,
    StartupError,
    shutdown,
)
from qvain_sync.domain.errors import ConstraintViolationError
from tests.helpers.datasets import list_datasets, make_dataset, store_datasets

if TYPE_CHECKING:
    from collections.abc import Callable
    from uuid import UUID

    UowFactory = Callable[[], SqlAlchemyDatasetUnitOfWork]


def _count(unit_of_work_factory: UowFactory) -> int:
    with unit_of_work_factory() as uow:
        return uow.session.execute(select(func.count()).select_from(dataset_table)).scalar_one()


def test_unit_of_work_requires_startup() -> None:
    shutdown()

    with pytest.raises(StartupError):
        SqlAlchemyDatasetUnitOfWork()


def test_commit_writes_stamp_after_start(unit_of_work_factory: UowFactory, owner: UUID) -> None:
    with SqlAlchemyBatchTransaction(trigger_uid=owner) as batch:
        started_at = batch.started_at
        batch.stage_create(make_dataset(owner))
        batch.commit()

    with unit_of_work_factory() as uow:
        stamp = uow.repositories.sync_stamps.get_last_sync(owner)
    assert stamp is not None
    assert stamp >= started_at
    assert len(list_datasets(unit_of_work_factory, owner)) == 1


def test_leaving_without_commit_discards_staged_writes(
    unit_of_work_factory: UowFactory,
    owner: UUID,
) -> None:
    with SqlAlchemyBatchTransaction(trigger_uid=owner) as batch:
        batch.stage_create(make_dataset(owner))
        batch.stage_create(make_dataset(owner))

    assert _count(unit_of_work_factory) == 0
    with unit_of_work_factory() as uow:
        assert uow.repositories.sync_stamps.get_last_sync(owner) is None


def test_exception_rolls_back(unit_of_work_factory: UowFactory, owner: UUID) -> None:
    with pytest.raises(RuntimeError), SqlAlchemyBatchTransaction(trigger_uid=owner) as batch:
        batch.stage_create(make_dataset(owner))
        raise RuntimeError

    assert _count(unit_of_work_factory) == 0


def test_rollback_after_commit_is_a_no_op(unit_of_work_factory: UowFactory, owner: UUID) -> None:
    with SqlAlchemyBatchTransaction(trigger_uid=owner) as batch:
        batch.stage_create(make_dataset(owner))
        batch.commit()
        batch.rollback()
        assert batch.committed

    assert _count(unit_of_work_factory) == 1


def test_failed_stage_keeps_earlier_writes(unit_of_work_factory: UowFactory, owner: UUID) -> None:
    existing = make_dataset(owner)
    store_datasets(unit_of_work_factory, existing)
    fresh = make_dataset(owner)

    with SqlAlchemyBatchTransaction(trigger_uid=owner) as batch:
        batch.stage_create(fresh)
        duplicate = make_dataset(owner)
        duplicate.id = existing.id
        with pytest.raises(ConstraintViolationError):
            batch.stage_create(duplicate)
        after = make_dataset(owner)
        batch.stage_create(after)
        batch.commit()

    ids = {dataset.id for dataset in list_datasets(unit_of_work_factory, owner)}
    assert ids == {existing.id, fresh.id, after.id}


def test_stage_update_and_synced(unit_of_work_factory: UowFactory, owner: UUID) -> None:
    old = datetime(2020, 1, 1, tzinfo=UTC)
    updated = make_dataset(owner, synced=old)
    touched = make_dataset(owner, synced=old)
    store_datasets(unit_of_work_factory, updated, touched)

    with SqlAlchemyBatchTransaction(trigger_uid=owner) as batch:
        batch.stage_update(updated.id, b'{"identifier": "urn:new"}')
        batch.stage_synced(touched.id)
        started_at = batch.started_at
        batch.commit()

    stored = {dataset.id: dataset for dataset in list_datasets(unit_of_work_factory, owner)}
    assert stored[updated.id].blob == b'{"identifier": "urn:new"}'
    assert stored[updated.id].modified == started_at
    assert stored[touched.id].modified is None
    assert stored[touched.id].synced == started_at


def test_commit_twice_is_refused(unit_of_work_factory: UowFactory) -> None:
    _ = unit_of_work_factory
    with SqlAlchemyBatchTransaction(trigger_uid=uuid4()) as batch:
        batch.commit()
        with pytest.raises(StartupError):
            batch.commit()
