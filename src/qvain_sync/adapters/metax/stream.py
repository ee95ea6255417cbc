"""Incremental consumption of a streamed Metax dataset listing.

Metax answers a streaming query with one top-level JSON array. A background
producer task decodes the array element by element and hands each element to
the consumer through a bounded queue; a terminal failure goes through a
separate single-slot queue. Both sides observe the same deadline.
"""

from __future__ import annotations

import asyncio
import json
import time
from enum import Enum, auto
from logging import getLogger
from typing import TYPE_CHECKING, Final

import httpx

from qvain_sync.domain.errors import (
    DeadlineExceededError,
    RegistryError,
    RegistryTransportError,
    StreamDecodeError,
    SyncError,
)
from qvain_sync.domain.model import RawRecord

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

log = getLogger(__name__)

_WHITESPACE: Final = frozenset(" \t\r\n")
_SCALAR_END: Final = frozenset(",]") | _WHITESPACE


class _State(Enum):
    OPEN = auto()
    FIRST = auto()
    ELEMENT = auto()
    IN_ELEMENT = auto()
    SEPARATOR = auto()
    DONE = auto()


class JsonArrayDecoder:
    """Split a top-level JSON array arriving in chunks into its elements.

    ``feed`` returns the source text of every element completed by the chunk.
    Each element is validated with :mod:`json` before it is returned; nothing
    is returned for the array itself.
    """

    def __init__(self, *, max_element_size: int) -> None:
        self._max_element_size = max_element_size
        self._buffer = ""
        self._pos = 0
        self._state = _State.OPEN
        self._start = 0
        self._depth = 0
        self._in_string = False
        self._escaped = False
        self._container = False

    @property
    def finished(self) -> bool:
        return self._state is _State.DONE

    def feed(self, chunk: str) -> list[str]:
        self._buffer += chunk
        elements: list[str] = []
        while self._pos < len(self._buffer):
            element = self._step()
            if element is not None:
                elements.append(element)
        self._compact()
        return elements

    def close(self) -> None:
        """Signal end of input.

        Raises:
            StreamDecodeError: the input ended before the array was closed.
        """
        if self._state is _State.OPEN:
            raise StreamDecodeError("empty stream, expected a JSON array")
        if self._state is not _State.DONE:
            raise StreamDecodeError("unexpected end of stream inside JSON array")

    def _step(self) -> str | None:
        char = self._buffer[self._pos]
        state = self._state

        if state is _State.IN_ELEMENT:
            return self._scan_element(char)

        self._pos += 1
        if char in _WHITESPACE:
            return None

        if state is _State.OPEN:
            if char != "[":
                raise StreamDecodeError("stream must be a JSON array")
            self._state = _State.FIRST
        elif state is _State.FIRST and char == "]":
            self._state = _State.DONE
        elif state in (_State.FIRST, _State.ELEMENT):
            if char in ",]":
                raise StreamDecodeError(f"unexpected {char!r} in JSON array")
            self._begin_element(char)
        elif state is _State.SEPARATOR:
            if char == ",":
                self._state = _State.ELEMENT
            elif char == "]":
                self._state = _State.DONE
            else:
                raise StreamDecodeError(f"expected ',' or ']' in JSON array, got {char!r}")
        else:
            raise StreamDecodeError("trailing data after JSON array")
        return None

    def _begin_element(self, char: str) -> None:
        self._state = _State.IN_ELEMENT
        self._start = self._pos - 1
        self._container = char in "{["
        self._depth = 1 if self._container else 0
        self._in_string = char == '"'
        self._escaped = False

    def _scan_element(self, char: str) -> str | None:
        if self._pos - self._start > self._max_element_size:
            raise StreamDecodeError(
                f"array element exceeds {self._max_element_size} characters"
            )

        if self._in_string:
            self._pos += 1
            if self._escaped:
                self._escaped = False
            elif char == "\\":
                self._escaped = True
            elif char == '"':
                self._in_string = False
                if not self._container:
                    return self._emit(self._pos)
            return None

        if not self._container:
            if char in _SCALAR_END:
                return self._emit(self._pos)
            self._pos += 1
            return None

        self._pos += 1
        if char == '"':
            self._in_string = True
        elif char in "{[":
            self._depth += 1
        elif char in "}]":
            self._depth -= 1
            if self._depth == 0:
                return self._emit(self._pos)
        return None

    def _emit(self, end: int) -> str:
        text = self._buffer[self._start : end]
        try:
            json.loads(text)
        except ValueError as exc:
            raise StreamDecodeError(f"malformed array element: {exc}") from exc
        self._state = _State.SEPARATOR
        return text

    def _compact(self) -> None:
        keep_from = self._start if self._state is _State.IN_ELEMENT else self._pos
        if keep_from == 0:
            return
        self._buffer = self._buffer[keep_from:]
        self._pos -= keep_from
        self._start -= keep_from


class _Closed:
    """Marks the end of the record queue."""


CLOSED: Final = _Closed()


class MetaxRecordStream:
    """Records of one streamed listing, produced by a background task.

    Iterating yields :class:`RawRecord` items in the order Metax streamed
    them. A terminal stream failure or an expired deadline is raised from
    the iterator. ``aclose`` abandons the stream and releases the response.
    """

    def __init__(
        self,
        response: httpx.Response,
        *,
        deadline: float,
        expected_count: int | None = None,
        buffer_size: int = 1,
        max_record_size: int = 8 * 1024 * 1024,
    ) -> None:
        self._response = response
        self._deadline = deadline
        self._expected_count = expected_count
        self._max_record_size = max_record_size
        self._records: asyncio.Queue[RawRecord | _Closed] = asyncio.Queue(maxsize=buffer_size)
        self._errors: asyncio.Queue[BaseException] = asyncio.Queue(maxsize=1)
        self._task: asyncio.Task[None] | None = None
        self._exhausted = False

    @property
    def expected_count(self) -> int | None:
        return self._expected_count

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._produce(), name="metax-record-stream")

    async def __aiter__(self) -> AsyncIterator[RawRecord]:
        self.start()
        while not self._exhausted:
            item = await self._next()
            if isinstance(item, _Closed):
                self._exhausted = True
                return
            yield item

    async def aclose(self) -> None:
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait({task})
        await self._response.aclose()

    async def _next(self) -> RawRecord | _Closed:
        get_record = asyncio.ensure_future(self._records.get())
        get_error = asyncio.ensure_future(self._errors.get())
        try:
            async with asyncio.timeout_at(self._deadline):
                await asyncio.wait({get_record, get_error}, return_when=asyncio.FIRST_COMPLETED)
        except TimeoutError as exc:
            msg = "registry stream did not finish before the deadline"
            raise DeadlineExceededError(msg) from exc
        finally:
            for pending in (get_record, get_error):
                if not pending.done():
                    pending.cancel()

        if get_error.done() and not get_error.cancelled():
            raise get_error.result()
        return get_record.result()

    async def _produce(self) -> None:
        started = time.monotonic()
        decoder = JsonArrayDecoder(max_element_size=self._max_record_size)
        try:
            async with asyncio.timeout_at(self._deadline):
                async for chunk in self._response.aiter_text():
                    for element in decoder.feed(chunk):
                        await self._records.put(RawRecord(element.encode("utf-8")))
                decoder.close()
                await self._records.put(CLOSED)
        except TimeoutError:
            log.info("metax: deadline reached, abandoning record stream")
        except Exception as exc:  # noqa: BLE001
            self._errors.put_nowait(_as_registry_error(exc))
        finally:
            await self._response.aclose()
            log.debug("metax: stream data processed in %.3fs", time.monotonic() - started)


def _as_registry_error(exc: Exception) -> BaseException:
    if isinstance(exc, SyncError):
        return exc
    if isinstance(exc, httpx.HTTPError):
        error = RegistryTransportError(f"registry stream interrupted: {exc}")
    else:
        error = RegistryError(f"registry stream failed: {exc!r}")
    error.__cause__ = exc
    return error
