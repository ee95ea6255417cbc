"""SQLAlchemy-backed units of work and the reconciliation batch transaction."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Literal

from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from qvain_sync.adapters.sqlalchemy.mappings import start_mappers
from qvain_sync.adapters.sqlalchemy.migrations import upgrade_head
from qvain_sync.adapters.sqlalchemy.repositories import (
    SqlAlchemyDatasetRepository,
    SqlAlchemySyncStampRepository,
)
from qvain_sync.config import get_database_config
from qvain_sync.domain.ports.unit_of_work import DatasetRepositories, RepositoryCollection

if TYPE_CHECKING:
    from collections.abc import Callable
    from types import TracebackType
    from uuid import UUID

    from sqlalchemy.engine import Connection, Engine

    from qvain_sync.domain.model import Dataset


class StartupError(RuntimeError):
    """Raised when a SQLAlchemy unit of work is used before initialisation."""


def _utcnow() -> datetime:
    return datetime.now(UTC)


def create_database_engine(database_uri: str, **options: Any) -> Engine:
    """Create an engine whose transactions support SAVEPOINT on every backend.

    pysqlite manages transactions itself and breaks SAVEPOINT; on SQLite the
    driver's handling is switched off and BEGIN is emitted explicitly.
    """

    engine = create_engine(database_uri, future=True, **options)
    if engine.dialect.name != "sqlite":
        return engine

    @event.listens_for(engine, "connect")
    def _disable_driver_transactions(dbapi_connection: Any, connection_record: Any) -> None:
        _ = connection_record
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(connection: Connection) -> None:
        connection.exec_driver_sql("BEGIN")

    return engine


@dataclass(slots=True)
class _AdapterState:
    _engine: Engine | None = None
    _session_factory: sessionmaker[Session] | None = None

    @property
    def engine(self) -> Engine | None:
        return self._engine

    @engine.setter
    def engine(self, value: Engine | None) -> None:
        self._session_factory = None
        self._engine = value

    @property
    def session_factory(self) -> sessionmaker[Session]:
        if self._engine is None:
            raise StartupError(
                "SQLAlchemy adapter not initialised. Call qvain_sync.adapters.sqlalchemy."
                "unit_of_work.startup() before requesting a unit of work."
            )
        if self._session_factory is None:
            self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)
        return self._session_factory


_STATE = _AdapterState()


def startup(
    *,
    engine: Engine | None = None,
    database_uri: str | None = None,
    force: bool = False,
) -> None:
    """Initialise the SQLAlchemy engine, metadata, and session factory."""

    if _STATE.engine is not None and not force:
        raise StartupError(
            "SQLAlchemy adapter already initialised. Pass force=True to reconfigure."
        )

    resolved_engine = engine or create_database_engine(
        database_uri or get_database_config().uri
    )
    start_mappers()
    upgrade_head(engine=resolved_engine)
    _STATE.engine = resolved_engine


def is_started() -> bool:
    """Return whether the adapter has been initialised."""

    return _STATE.engine is not None


def shutdown() -> None:
    """Dispose the managed engine and reset state (primarily for tests)."""

    if _STATE.engine is not None:
        _STATE.engine.dispose()
    _STATE.engine = None


def _build_dataset_repositories(
    session: Session,
    clock: Callable[[], datetime] = _utcnow,
) -> DatasetRepositories:
    return DatasetRepositories(
        datasets=SqlAlchemyDatasetRepository(session, clock=clock),
        sync_stamps=SqlAlchemySyncStampRepository(session),
    )


class BaseSqlAlchemyUnitOfWork[TRepositories: RepositoryCollection](ABC):
    """Generic SQLAlchemy unit of work with pluggable repository collections."""

    def __init__(self) -> None:
        self.session_factory: sessionmaker[Session] = _STATE.session_factory
        self._session: Session | None = None

    @abstractmethod
    def _build_repositories(self, session: Session) -> TRepositories: ...

    def __enter__(self) -> BaseSqlAlchemyUnitOfWork[TRepositories]:
        self.session = self.session_factory()
        self._repositories = self._build_repositories(self.session)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> Literal[False]:
        if exc_type is not None:
            self.rollback()
        self.session.close()
        self.session = None
        return False

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()

    @property
    def repositories(self) -> TRepositories:
        if self._session is None:
            raise StartupError("Unit of work session not initialised")
        return self._repositories

    @property
    def session(self) -> Session:
        if self._session is None:
            raise StartupError("Unit of work session not initialised")
        return self._session

    @session.setter
    def session(self, session: Session | None) -> None:
        if self._session is not None and session is not None:
            raise StartupError("Unit of work session already initialised")
        self._session = session


class SqlAlchemyDatasetUnitOfWork(BaseSqlAlchemyUnitOfWork[DatasetRepositories]):
    """Unit of work managing SQLAlchemy sessions for datasets."""

    def _build_repositories(self, session: Session) -> DatasetRepositories:
        return _build_dataset_repositories(session)


class SqlAlchemyBatchTransaction:
    """One SQLAlchemy transaction spanning a whole reconciliation pass.

    Leaving the context without ``commit`` rolls every staged write back.
    """

    def __init__(
        self,
        *,
        trigger_uid: UUID | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.session_factory: sessionmaker[Session] = _STATE.session_factory
        self.trigger_uid = trigger_uid
        self._clock = clock
        self._session: Session | None = None
        self._repositories: DatasetRepositories | None = None
        self._started_at: datetime | None = None
        self._committed = False

    def __enter__(self) -> SqlAlchemyBatchTransaction:
        if self._session is not None:
            raise StartupError("Batch transaction already open")
        self._session = self.session_factory()
        self._session.begin()
        self._started_at = self._clock()
        self._repositories = _build_dataset_repositories(self._session, self._clock)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> Literal[False]:
        try:
            self.rollback()
        finally:
            if self._session is not None:
                self._session.close()
            self._session = None
            self._repositories = None
        return False

    @property
    def started_at(self) -> datetime:
        if self._started_at is None:
            raise StartupError("Batch transaction not open")
        return self._started_at

    @property
    def committed(self) -> bool:
        return self._committed

    @property
    def repositories(self) -> DatasetRepositories:
        if self._repositories is None:
            raise StartupError("Batch transaction not open")
        return self._repositories

    def stage_create(self, dataset: Dataset) -> None:
        self.repositories.datasets.create_with_metadata(dataset)

    def stage_update(
        self,
        dataset_id: UUID,
        blob: bytes,
        *,
        synced: datetime | None = None,
    ) -> None:
        self.repositories.datasets.update_by_service(
            dataset_id, blob, at=self.started_at, synced=synced
        )

    def stage_synced(self, dataset_id: UUID) -> None:
        self.repositories.datasets.update_synced(dataset_id, at=self.started_at)

    def commit(self) -> None:
        if self._committed:
            raise StartupError("Batch transaction already committed")
        if self._session is None:
            raise StartupError("Batch transaction not open")
        if self.trigger_uid is not None:
            self.repositories.sync_stamps.write_stamp(self.trigger_uid, self._clock())
        self._session.commit()
        self._committed = True

    def rollback(self) -> None:
        if self._committed or self._session is None:
            return
        self._session.rollback()


if TYPE_CHECKING:
    from qvain_sync.domain.ports.unit_of_work import BatchTransaction, DatasetUnitOfWork

    _uow_check: DatasetUnitOfWork = SqlAlchemyDatasetUnitOfWork()
    _batch_check: BatchTransaction = SqlAlchemyBatchTransaction()
