"""Ports for talking to the dataset registry."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from contextlib import AbstractAsyncContextManager
    from datetime import timedelta

    from qvain_sync.domain.model import RawRecord, RecordView, RegistryQuery, StoredRecord


@runtime_checkable
class RecordStream(Protocol):
    """Lazy, cancellable sequence of raw records from one listing request.

    Iteration ends when the registry closed the array; a stream-level failure
    is raised from the iterator.
    """

    @property
    def expected_count(self) -> int | None: ...

    def __aiter__(self) -> AsyncIterator[RawRecord]: ...

    async def aclose(self) -> None: ...


@runtime_checkable
class RegistryGateway(Protocol):
    """Contract of the registry client used by reconciliation and publication."""

    def open_stream(
        self,
        query: RegistryQuery,
        *,
        timeout: timedelta,
    ) -> AbstractAsyncContextManager[RecordStream]: ...

    async def store(self, blob: bytes) -> bytes | None: ...

    async def get(self, identifier: str) -> bytes: ...

    def parse_record(self, data: bytes) -> RecordView: ...

    def parse_store_response(self, data: bytes) -> StoredRecord: ...
