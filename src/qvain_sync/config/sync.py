"""Synchronization defaults for reconciliation and publication."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

DEFAULT_REQUEST_TIMEOUT = timedelta(seconds=15)
DEFAULT_RETRY_INTERVAL = timedelta(seconds=10)
DEFAULT_PUBLISH_TIMEOUT = timedelta(seconds=10)
DEFAULT_RECORD_BUFFER = 1
DEFAULT_MAX_RECORD_BYTES = 8 * 1024 * 1024


@dataclass(frozen=True, slots=True)
class SyncConfig:
    request_timeout: timedelta = DEFAULT_REQUEST_TIMEOUT
    retry_interval: timedelta = DEFAULT_RETRY_INTERVAL
    publish_timeout: timedelta = DEFAULT_PUBLISH_TIMEOUT
    record_buffer: int = DEFAULT_RECORD_BUFFER
    max_record_bytes: int = DEFAULT_MAX_RECORD_BYTES


def get_sync_config() -> SyncConfig:
    return SyncConfig()
