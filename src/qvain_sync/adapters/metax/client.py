"""HTTP client for the Metax dataset API."""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import UTC
from email.utils import format_datetime
from logging import getLogger
from typing import TYPE_CHECKING
from urllib.parse import quote

import httpx

from qvain_sync.adapters.http_resilience import ResilienceConfig, ResilientClient
from qvain_sync.config.registry import DATASETS_ENDPOINT, RegistryConfig, get_registry_config
from qvain_sync.config.sync import SyncConfig
from qvain_sync.domain.errors import (
    DeadlineExceededError,
    EmptyDatasetError,
    EmptyResponseError,
    InvalidContentTypeError,
    RegistryAPIError,
    RegistryTransportError,
    SyncError,
)
from qvain_sync.domain.ports.registry import RegistryGateway

from .stream import MetaxRecordStream
from .translator import get_identifiers, parse_record, parse_store_response

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable
    from datetime import timedelta

    from qvain_sync.domain.model import RecordView, RegistryQuery, StoredRecord

log = getLogger(__name__)

_JSON_CONTENT_TYPE = "application/json"
_STORE_ERRORS: dict[int, str] = {
    400: "invalid dataset",
    401: "authorisation required",
    403: "forbidden",
    404: "not found",
}
_GET_ERRORS: dict[int, str] = {
    403: "forbidden",
    404: "not found",
}


def _default_client_factory(config: ResilienceConfig) -> ResilientClient:
    return ResilientClient(config)


def _has_json(response: httpx.Response) -> bool:
    return response.headers.get("Content-Type", "").startswith(_JSON_CONTENT_TYPE)


def _dataset_url(identifier: str) -> str:
    return DATASETS_ENDPOINT + quote(identifier, safe=":")


def build_query(query: RegistryQuery) -> tuple[httpx.QueryParams, dict[str, str]]:
    """Return the query parameters and headers of a streaming listing."""
    params: list[tuple[str, str]] = []
    if query.identity:
        params.append(("metadata_provider_user", query.identity))
    elif query.owner_id:
        params.append(("owner_id", query.owner_id))
    params.extend((("stream", "true"), ("no_pagination", "true")))

    headers: dict[str, str] = {}
    if query.since is not None:
        since = query.since
        if since.tzinfo is None:
            since = since.replace(tzinfo=UTC)
        headers["If-Modified-Since"] = format_datetime(since.astimezone(UTC), usegmt=True)
    return httpx.QueryParams(params), headers


def parse_expected_count(response: httpx.Response) -> int | None:
    value = response.headers.get("X-Count")
    if value is None:
        log.info("metax: missing X-Count header in streaming response")
        return None
    try:
        count = int(value)
    except ValueError:
        log.warning("metax: invalid X-Count header %r", value)
        return None
    log.debug("metax: x-count: %d", count)
    return count


async def _check_stream_response(response: httpx.Response) -> None:
    status = response.status_code
    if status != httpx.codes.OK:
        body = await response.aread()
        if status == httpx.codes.NOT_FOUND:
            message = "not found"
        elif status == httpx.codes.FORBIDDEN:
            message = "forbidden"
        else:
            message = "can't retrieve datasets"
        raise RegistryAPIError(message, status_code=status, original_error=body or None)
    if not _has_json(response):
        raise InvalidContentTypeError(response.headers.get("Content-Type"))


@dataclass(slots=True)
class MetaxClient:
    """Talks to the Metax dataset endpoints.

    Each operation opens its own :class:`ResilientClient` through
    ``client_factory`` so the client holds no connection state between calls.
    """

    config: RegistryConfig = field(default_factory=get_registry_config)
    sync: SyncConfig = field(default_factory=SyncConfig)
    client_factory: Callable[[ResilienceConfig], ResilientClient] = field(
        default=_default_client_factory
    )

    @asynccontextmanager
    async def open_stream(
        self,
        query: RegistryQuery,
        *,
        timeout: timedelta,
    ) -> AsyncIterator[MetaxRecordStream]:
        """Start a streaming dataset listing bounded by ``timeout``.

        Raises:
            ValueError: ``timeout`` is not positive.
            RegistryAPIError: Metax answered with a status other than 200.
            InvalidContentTypeError: the listing is not JSON.
            RegistryTransportError: the request could not be sent.
            DeadlineExceededError: Metax did not answer before the deadline.
        """
        seconds = timeout.total_seconds()
        if seconds <= 0:
            raise ValueError("stream deadline must be a positive duration")
        deadline = asyncio.get_running_loop().time() + seconds
        params, headers = build_query(query)
        started = time.monotonic()

        async with self.client_factory(self.config.resilience) as client:
            try:
                async with asyncio.timeout_at(deadline):
                    response = await client.stream(
                        "GET", DATASETS_ENDPOINT, params=params, headers=headers
                    )
            except TimeoutError as exc:
                raise DeadlineExceededError("metax did not answer before the deadline") from exc
            except httpx.HTTPError as exc:
                raise RegistryTransportError(f"can't query datasets: {exc}") from exc

            try:
                await _check_stream_response(response)
            except SyncError:
                await response.aclose()
                raise

            stream = MetaxRecordStream(
                response,
                deadline=deadline,
                expected_count=parse_expected_count(response),
                buffer_size=self.sync.record_buffer,
                max_record_size=self.sync.max_record_bytes,
            )
            stream.start()
            try:
                yield stream
            finally:
                await stream.aclose()
                log.debug("metax: stream query processed in %.3fs", time.monotonic() - started)

    async def store(self, blob: bytes) -> bytes | None:
        """Create or update a dataset, returning the stored record.

        Without a registry identifier in ``blob`` the dataset is created with
        POST, otherwise updated with PUT. Returns ``None`` when Metax answers
        204 without a body.
        """
        if not blob:
            raise EmptyDatasetError()

        identifier = get_identifiers(blob).registry_id
        started = time.monotonic()
        async with self.client_factory(self.config.resilience) as client:
            try:
                if identifier is None:
                    response = await client.post(DATASETS_ENDPOINT, content=blob)
                else:
                    response = await client.put(_dataset_url(identifier), content=blob)
            except httpx.HTTPError as exc:
                raise RegistryTransportError(f"can't store dataset: {exc}") from exc
        log.debug("metax: store processed in %.3fs", time.monotonic() - started)

        status = response.status_code
        body = response.content
        if status in (httpx.codes.OK, httpx.codes.CREATED):
            if not _has_json(response):
                raise InvalidContentTypeError(response.headers.get("Content-Type"))
            if not body:
                raise EmptyResponseError("metax returned an empty body for a stored dataset")
            if status == httpx.codes.CREATED:
                log.info("metax: created dataset %s", get_identifiers(body).registry_id)
            else:
                log.info("metax: updated dataset %s", identifier)
            return body
        if status == httpx.codes.NO_CONTENT:
            return None

        message = _STORE_ERRORS.get(status, "API returned error")
        raise RegistryAPIError(message, status_code=status, original_error=body or None)

    async def get(self, identifier: str) -> bytes:
        """Fetch one dataset by its registry identifier."""
        async with self.client_factory(self.config.resilience) as client:
            try:
                response = await client.get(_dataset_url(identifier))
            except httpx.HTTPError as exc:
                raise RegistryTransportError(f"can't fetch dataset {identifier}: {exc}") from exc

        status = response.status_code
        if status != httpx.codes.OK:
            message = _GET_ERRORS.get(status, "API returned error")
            raise RegistryAPIError(
                message, status_code=status, original_error=response.content or None
            )
        if not _has_json(response):
            raise InvalidContentTypeError(response.headers.get("Content-Type"))
        if not response.content:
            raise EmptyResponseError(f"metax returned an empty body for dataset {identifier}")
        return response.content

    def parse_record(self, data: bytes) -> RecordView:
        return parse_record(data)

    def parse_store_response(self, data: bytes) -> StoredRecord:
        return parse_store_response(data)


if TYPE_CHECKING:
    _gateway_check: RegistryGateway = MetaxClient()
