"""Repository implementations backed by SQLAlchemy sessions."""

from __future__ import annotations

import json
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError

from qvain_sync.adapters.sqlalchemy.mappings import dataset_table, last_sync_table
from qvain_sync.domain.errors import ConstraintViolationError, NotFoundError, NotOwnerError
from qvain_sync.domain.model import Dataset

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator, Sequence
    from uuid import UUID

    from sqlalchemy.orm import Session


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _check_blob(blob: bytes) -> None:
    try:
        json.loads(blob)
    except ValueError as exc:
        raise ConstraintViolationError("dataset blob is not valid JSON") from exc


def _later(current: datetime | None, candidate: datetime) -> datetime:
    if current is None or candidate > current:
        return candidate
    return current


class SqlAlchemyDatasetRepository:
    """Dataset persistence.

    Writes run inside a SAVEPOINT so a failed write leaves the surrounding
    transaction usable.
    """

    def __init__(self, session: Session, *, clock: Callable[[], datetime] = _utcnow) -> None:
        self.session = session
        self._clock = clock

    def get(self, dataset_id: UUID) -> Dataset:
        dataset = self.session.get(Dataset, dataset_id)
        if dataset is None:
            raise NotFoundError()
        return dataset

    def get_with_owner(self, dataset_id: UUID, owner: UUID) -> Dataset:
        dataset = self.get(dataset_id)
        if dataset.owner != owner:
            raise NotOwnerError()
        return dataset

    def list_for_owner(self, owner: UUID) -> Sequence[Dataset]:
        stmt = (
            select(Dataset)
            .where(dataset_table.c.owner == owner)
            .order_by(dataset_table.c.created, dataset_table.c.id)
        )
        return self.session.execute(stmt).scalars().all()

    def create(self, dataset: Dataset) -> None:
        """Insert a dataset created by a local user."""
        now = self._clock()
        dataset.created = now
        dataset.modified = now
        self._insert(dataset)

    def create_with_metadata(self, dataset: Dataset) -> None:
        """Insert a dataset whose timestamps and flags come from another service.

        ``modified`` is left for user edits.
        """
        if dataset.created is None:
            dataset.created = self._clock()
        self._insert(dataset)

    def update_by_service(
        self,
        dataset_id: UUID,
        blob: bytes,
        *,
        at: datetime,
        synced: datetime | None = None,
    ) -> None:
        _check_blob(blob)
        dataset = self.get(dataset_id)
        with self._savepoint():
            dataset.blob = blob
            dataset.modified = at
            target = at if synced is None else _later(synced, at)
            dataset.synced = _later(dataset.synced, target)
            dataset.seq += 1

    def update_synced(self, dataset_id: UUID, *, at: datetime) -> None:
        dataset = self.get(dataset_id)
        with self._savepoint():
            dataset.synced = _later(dataset.synced, at)
            dataset.seq += 1

    def store_published(self, dataset_id: UUID, blob: bytes, *, synced: datetime) -> None:
        _check_blob(blob)
        dataset = self.get(dataset_id)
        with self._savepoint():
            dataset.blob = blob
            dataset.published = True
            dataset.synced = _later(dataset.synced, synced)
            dataset.seq += 1

    def store_new_version(
        self,
        based_on: UUID,
        dataset_id: UUID,
        *,
        created: datetime,
        blob: bytes,
    ) -> Dataset:
        """Insert a registry-forked version of ``based_on`` as a new dataset.

        Raises:
            NotFoundError: the original dataset no longer exists.
        """
        _check_blob(blob)
        original = self.session.get(Dataset, based_on)
        if original is None:
            raise NotFoundError("original dataset not found")
        version = Dataset(
            id=dataset_id,
            creator=original.creator,
            owner=original.owner,
            created=created,
            synced=created,
            published=True,
            valid=True,
            family=original.family,
            schema=original.schema,
            blob=blob,
            based_on=based_on,
        )
        self._insert(version)
        return version

    def _insert(self, dataset: Dataset) -> None:
        _check_blob(dataset.blob)
        with self._savepoint():
            self.session.add(dataset)

    @contextmanager
    def _savepoint(self) -> Iterator[None]:
        try:
            with self.session.begin_nested():
                yield
        except IntegrityError as exc:
            raise ConstraintViolationError(str(exc.orig)) from exc


class SqlAlchemySyncStampRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get_last_sync(self, uid: UUID) -> datetime | None:
        stmt = select(last_sync_table.c.ts).where(last_sync_table.c.uid == uid)
        return self.session.execute(stmt).scalar_one_or_none()

    def write_stamp(self, uid: UUID, at: datetime, *, success: bool = True) -> None:
        result = self.session.execute(
            update(last_sync_table)
            .where(last_sync_table.c.uid == uid)
            .values(ts=at, success=success)
        )
        if result.rowcount == 0:
            self.session.execute(insert(last_sync_table).values(uid=uid, ts=at, success=success))
