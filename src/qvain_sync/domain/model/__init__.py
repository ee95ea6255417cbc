"""Domain model package."""

from __future__ import annotations

from .dataset import (
    CATALOG_SCHEMAS,
    METAX_FAMILY,
    SCHEMA_ATT,
    SCHEMA_IDA,
    Dataset,
    is_nil,
    new_id,
    schema_for_catalog,
)
from .registry import APP_TAG, Linkage, RawRecord, RecordView, RegistryQuery, StoredRecord

__all__ = [
    "APP_TAG",
    "CATALOG_SCHEMAS",
    "METAX_FAMILY",
    "SCHEMA_ATT",
    "SCHEMA_IDA",
    "Dataset",
    "Linkage",
    "RawRecord",
    "RecordView",
    "RegistryQuery",
    "StoredRecord",
    "is_nil",
    "new_id",
    "schema_for_catalog",
]
