"""SQLAlchemy mapping metadata for the dataset model."""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime
from functools import cache

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Dialect,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
    TypeDecorator,
    Uuid,
    orm,
)

from qvain_sync.domain.model import Dataset

log = logging.getLogger(__name__)

UUIDColumnType = Uuid[uuid.UUID]


class UTCDateTime(TypeDecorator[datetime]):
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        return value if value.tzinfo else value.replace(tzinfo=UTC)


class JsonBlob(TypeDecorator[bytes]):
    """Stores a UTF-8 JSON document given as bytes."""

    impl = Text
    cache_ok = True

    def process_bind_param(self, value: bytes | None, dialect: Dialect) -> str | None:
        _ = dialect
        if value is None:
            return None
        return value.decode("utf-8")

    def process_result_value(self, value: str | None, dialect: Dialect) -> bytes | None:
        _ = dialect
        if value is None:
            return None
        return value.encode("utf-8")


mapper_registry = orm.registry()
mapper_registry.metadata.naming_convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_label)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_label)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

# Core tables -----------------------------------------------------------------

dataset_table = Table(
    "datasets",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True),
    Column("creator", UUIDColumnType, nullable=False),
    Column("owner", UUIDColumnType, nullable=False, index=True),
    Column("created", UTCDateTime(), nullable=True),
    Column("modified", UTCDateTime(), nullable=True),
    Column("synced", UTCDateTime(), nullable=True),
    Column("seq", Integer, nullable=False, default=0),
    Column("published", Boolean, nullable=False, default=False),
    Column("valid", Boolean, nullable=False, default=False),
    Column("family", Integer, nullable=False),
    Column("schema", String(64), nullable=False),
    Column("based_on", UUIDColumnType, ForeignKey("datasets.id"), nullable=True),
    Column("blob", JsonBlob(), nullable=False),
)

last_sync_table = Table(
    "lastsync",
    mapper_registry.metadata,
    Column("uid", UUIDColumnType, primary_key=True),
    Column("ts", UTCDateTime(), nullable=False),
    Column("success", Boolean, nullable=False, default=True),
)


@cache
def start_mappers() -> orm.registry:
    """Configure SQLAlchemy mappers for the domain model."""

    log.info("Starting SQLAlchemy mappers")

    mapper_registry.map_imperatively(Dataset, dataset_table)
    return mapper_registry

