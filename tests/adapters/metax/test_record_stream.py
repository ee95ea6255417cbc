from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import TYPE_CHECKING

import httpx
import pytest

from qvain_sync.config import SyncConfig
from qvain_sync.domain.errors import (
    DeadlineExceededError,
    RegistryTransportError,
    StreamDecodeError,
)
from qvain_sync.domain.model import RegistryQuery
from tests.helpers.metax import make_metax_client

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from qvain_sync.adapters.metax import MetaxClient
    from qvain_sync.domain.model import RawRecord

QUERY = RegistryQuery(owner_id="owner")


class _Body(httpx.AsyncByteStream):
    """Response body delivered in chunks, optionally stalling or failing."""

    def __init__(self, *chunks: bytes, stall: float = 0, error: Exception | None = None) -> None:
        self.chunks = chunks
        self.stall = stall
        self.error = error
        self.sent = 0
        self.closed = False

    async def __aiter__(self) -> AsyncIterator[bytes]:
        for chunk in self.chunks:
            self.sent += 1
            yield chunk
        if self.error is not None:
            raise self.error
        if self.stall:
            await asyncio.sleep(self.stall)

    async def aclose(self) -> None:
        self.closed = True


def _streaming_client(body: _Body, *, buffer: int = 1) -> MetaxClient:
    def handler(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, headers={"Content-Type": "application/json"}, stream=body)

    return make_metax_client(handler, sync=SyncConfig(record_buffer=buffer))


async def _drain(body: _Body, timeout: timedelta, *, buffer: int = 1) -> list[RawRecord]:
    client = _streaming_client(body, buffer=buffer)
    records: list[RawRecord] = []
    async with client.open_stream(QUERY, timeout=timeout) as stream:
        records.extend([record async for record in stream])
    return records


def test_stream_reassembles_records_from_chunks() -> None:
    body = _Body(b'[{"identifier": "a"', b'}, {"identifier"', b': "b"}]')

    records = asyncio.run(_drain(body, timedelta(seconds=5)))

    assert [record.data for record in records] == [
        b'{"identifier": "a"}',
        b'{"identifier": "b"}',
    ]
    assert body.closed


def test_stream_deadline_aborts_stalled_response() -> None:
    body = _Body(b'[{"identifier": "a"}, ', stall=10)

    with pytest.raises(DeadlineExceededError):
        asyncio.run(_drain(body, timedelta(milliseconds=100)))

    assert body.closed


def test_stream_deadline_keeps_records_already_delivered() -> None:
    body = _Body(b'[{"identifier": "a"}, ', stall=10)
    received: list[RawRecord] = []

    async def run() -> None:
        client = _streaming_client(body)
        async with client.open_stream(QUERY, timeout=timedelta(milliseconds=100)) as stream:
            async for record in stream:
                received.append(record)

    with pytest.raises(DeadlineExceededError):
        asyncio.run(run())

    assert [record.data for record in received] == [b'{"identifier": "a"}']


def test_stream_reports_malformed_array() -> None:
    body = _Body(b'[{"identifier": "a"}, {"identifier": }]')

    with pytest.raises(StreamDecodeError):
        asyncio.run(_drain(body, timedelta(seconds=5)))


def test_stream_reports_interrupted_transfer() -> None:
    body = _Body(b'[{"identifier": "a"}', error=httpx.ReadError("connection reset"))

    with pytest.raises(RegistryTransportError):
        asyncio.run(_drain(body, timedelta(seconds=5)))


def test_stream_close_abandons_producer() -> None:
    body = _Body(b"[", *[b'{"n": 1}, ' for _ in range(50)], stall=10)

    async def run() -> None:
        client = _streaming_client(body)
        async with client.open_stream(QUERY, timeout=timedelta(seconds=30)) as stream:
            async for _record in stream:
                break

    asyncio.run(run())

    assert body.closed
    assert body.sent < 51
