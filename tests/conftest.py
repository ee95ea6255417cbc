from __future__ import annotations

import os
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

import pytest
from sqlalchemy.engine import Engine  # noqa: TC002

from qvain_sync.adapters.sqlalchemy.unit_of_work import (
    SqlAlchemyBatchTransaction,
    SqlAlchemyDatasetUnitOfWork,
    create_database_engine,
    shutdown,
    startup,
)

os.environ.setdefault("DATABASE_URI", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("APP_METAX_API_HOST", "metax.test")

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator
    from pathlib import Path

    from qvain_sync.domain.ports.unit_of_work import BatchTransaction


@pytest.fixture
def sqlite_engine(tmp_path: Path) -> Iterator[Engine]:
    # In-memory SQLite hands every session the same connection.
    engine = create_database_engine(f"sqlite+pysqlite:///{tmp_path / 'qvain.db'}")
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def unit_of_work_factory(
    sqlite_engine: Engine,
) -> Iterator[Callable[[], SqlAlchemyDatasetUnitOfWork]]:
    startup(engine=sqlite_engine, force=True)
    try:
        yield SqlAlchemyDatasetUnitOfWork
    finally:
        shutdown()


@pytest.fixture
def batch_factory(
    unit_of_work_factory: Callable[[], SqlAlchemyDatasetUnitOfWork],
) -> Callable[[UUID], BatchTransaction]:
    _ = unit_of_work_factory

    def factory(uid: UUID) -> BatchTransaction:
        return SqlAlchemyBatchTransaction(trigger_uid=uid)

    return factory


@pytest.fixture
def owner() -> UUID:
    return uuid4()
