"""Public interface for the Metax adapter."""

from __future__ import annotations

from .client import MetaxClient, build_query, parse_expected_count
from .schema import DataCatalog, Editor, NewVersionCreated, RegistryRecord, StoreResponse
from .stream import JsonArrayDecoder, MetaxRecordStream
from .translator import Identifiers, get_identifiers, parse_record, parse_store_response

__all__ = [
    "DataCatalog",
    "Editor",
    "Identifiers",
    "JsonArrayDecoder",
    "MetaxClient",
    "MetaxRecordStream",
    "NewVersionCreated",
    "RegistryRecord",
    "StoreResponse",
    "build_query",
    "get_identifiers",
    "parse_expected_count",
    "parse_record",
    "parse_store_response",
]
