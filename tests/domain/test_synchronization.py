from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING
from uuid import uuid4

import httpx
import pytest

from qvain_sync.domain.errors import (
    RegistryAPIError,
    StreamDecodeError,
    TooSoonError,
)
from qvain_sync.domain.model import SCHEMA_ATT
from qvain_sync.domain.retry_gate import RetryGate
from qvain_sync.domain.synchronization import fetch, fetch_all, fetch_since
from tests.helpers.datasets import list_datasets, load_dataset, make_dataset, store_datasets
from tests.helpers.metax import (
    ATT_CATALOG,
    chunked_handler,
    json_response,
    listing,
    listing_handler,
    make_metax_client,
    make_record,
    to_blob,
)

if TYPE_CHECKING:
    from collections.abc import Callable
    from uuid import UUID

    from qvain_sync.adapters.sqlalchemy.unit_of_work import SqlAlchemyDatasetUnitOfWork
    from qvain_sync.domain.ports.unit_of_work import BatchTransaction
    from qvain_sync.domain.synchronization import SyncResult

    UowFactory = Callable[[], SqlAlchemyDatasetUnitOfWork]
    BatchFactory = Callable[[UUID], BatchTransaction]

TIMEOUT = timedelta(seconds=5)
JAN = datetime(2024, 1, 1, tzinfo=UTC)
MAY = datetime(2024, 5, 1, tzinfo=UTC)
JUN = datetime(2024, 6, 1, tzinfo=UTC)


def _sync_all(body: bytes, batch_factory: BatchFactory, owner: UUID) -> SyncResult:
    client = make_metax_client(listing_handler(body))
    return fetch_all(client, batch_factory=batch_factory, uid=owner, timeout=TIMEOUT)


def _stamp(unit_of_work_factory: UowFactory, owner: UUID) -> datetime | None:
    with unit_of_work_factory() as uow:
        return uow.repositories.sync_stamps.get_last_sync(owner)


def test_new_records_are_created(
    unit_of_work_factory: UowFactory,
    batch_factory: BatchFactory,
    owner: UUID,
) -> None:
    body = listing(
        make_record("urn:1", created=JAN, modified=MAY),
        make_record("urn:2", catalog=ATT_CATALOG),
    )
    started = datetime.now(UTC)

    result = _sync_all(body, batch_factory, owner)

    assert (result.read, result.created, result.skipped) == (2, 2, 0)
    datasets = {d.registry_identifier: d for d in list_datasets(unit_of_work_factory, owner)}
    first = datasets["urn:1"]
    assert first.owner == owner
    assert first.creator == owner
    assert first.published is True
    assert first.created == JAN
    assert first.synced == MAY
    assert json.loads(first.blob)["identifier"] == "urn:1"
    assert datasets["urn:2"].schema == SCHEMA_ATT
    assert datasets["urn:2"].created is not None
    assert datasets["urn:2"].created >= started


def test_successful_pass_commits_once_and_stamps(
    unit_of_work_factory: UowFactory,
    batch_factory: BatchFactory,
    owner: UUID,
) -> None:
    started = datetime.now(UTC)

    _sync_all(listing(make_record("urn:1")), batch_factory, owner)

    stamp = _stamp(unit_of_work_factory, owner)
    assert stamp is not None
    assert stamp >= started


def test_scenario_update_touch_and_abort(
    unit_of_work_factory: UowFactory,
    batch_factory: BatchFactory,
    owner: UUID,
) -> None:
    matched = make_dataset(owner, identifier="X", synced=JAN)
    linked = make_dataset(owner, identifier="urn:linked", synced=JUN)
    store_datasets(unit_of_work_factory, matched, linked)
    record_a = make_record("X", modified=MAY, title="remote A")
    record_b = make_record("urn:linked", local_id=linked.id, modified=MAY, title="remote B")
    record_new = make_record("urn:new", modified=MAY)

    # A broken element after A, B and a new record aborts the whole pass.
    valid = listing(record_a, record_b, record_new)[:-1]
    client = make_metax_client(chunked_handler(valid, b', {"identifier": "C", }]'))
    with pytest.raises(StreamDecodeError):
        fetch_all(client, batch_factory=batch_factory, uid=owner, timeout=TIMEOUT)

    assert load_dataset(unit_of_work_factory, matched.id).blob == matched.blob
    assert load_dataset(unit_of_work_factory, linked.id).synced == JUN
    assert len(list_datasets(unit_of_work_factory, owner)) == 2
    assert "urn:new" not in {
        d.registry_identifier for d in list_datasets(unit_of_work_factory, owner)
    }
    assert _stamp(unit_of_work_factory, owner) is None

    # Without the broken element, A is updated and B only touched.
    started = datetime.now(UTC)
    result = _sync_all(listing(record_a, record_b), batch_factory, owner)

    assert (result.updated, result.unchanged, result.created) == (1, 1, 0)
    updated = load_dataset(unit_of_work_factory, matched.id)
    assert json.loads(updated.blob)["research_dataset"]["title"]["en"] == "remote A"
    assert updated.modified is not None
    assert updated.modified >= started
    touched = load_dataset(unit_of_work_factory, linked.id)
    assert touched.blob == linked.blob
    assert touched.modified is None
    assert touched.synced is not None
    assert touched.synced >= started


def test_second_identical_pass_writes_no_blobs(
    unit_of_work_factory: UowFactory,
    batch_factory: BatchFactory,
    owner: UUID,
) -> None:
    local = make_dataset(owner)
    store_datasets(unit_of_work_factory, local)
    body = listing(make_record("urn:1", local_id=local.id, modified=MAY))

    first = _sync_all(body, batch_factory, owner)
    after_first = load_dataset(unit_of_work_factory, local.id)
    second = _sync_all(body, batch_factory, owner)
    after_second = load_dataset(unit_of_work_factory, local.id)

    assert first.updated == 1
    assert second.updated == 0
    assert second.unchanged == 1
    assert after_second.modified == after_first.modified
    assert after_second.blob == after_first.blob
    assert after_second.synced is not None
    assert after_first.synced is not None
    assert after_second.synced >= after_first.synced


def test_undated_record_is_written_once_then_compared_by_content(
    unit_of_work_factory: UowFactory,
    batch_factory: BatchFactory,
    owner: UUID,
) -> None:
    local = make_dataset(owner)
    store_datasets(unit_of_work_factory, local)
    body = listing(make_record("urn:1", local_id=local.id))

    first = _sync_all(body, batch_factory, owner)
    after_first = load_dataset(unit_of_work_factory, local.id)
    second = _sync_all(body, batch_factory, owner)
    after_second = load_dataset(unit_of_work_factory, local.id)

    assert first.updated == 1
    assert (second.updated, second.unchanged) == (0, 1)
    assert after_second.modified == after_first.modified
    assert after_second.blob == after_first.blob


def test_undated_record_with_new_content_is_updated(
    unit_of_work_factory: UowFactory,
    batch_factory: BatchFactory,
    owner: UUID,
) -> None:
    local = make_dataset(owner)
    store_datasets(unit_of_work_factory, local)
    _sync_all(listing(make_record("urn:1", local_id=local.id)), batch_factory, owner)

    changed = make_record("urn:1", local_id=local.id, title="renamed")
    result = _sync_all(listing(changed), batch_factory, owner)

    assert result.updated == 1
    assert load_dataset(unit_of_work_factory, local.id).blob == to_blob(changed)


def test_duplicate_identifiers_in_one_pass_create_one_dataset(
    unit_of_work_factory: UowFactory,
    batch_factory: BatchFactory,
    owner: UUID,
) -> None:
    record = make_record("urn:dup", modified=MAY)

    result = _sync_all(listing(record, record), batch_factory, owner)

    assert result.created == 1
    assert result.unchanged == 1
    assert len(list_datasets(unit_of_work_factory, owner)) == 1


def test_bad_records_are_skipped(
    unit_of_work_factory: UowFactory,
    batch_factory: BatchFactory,
    owner: UUID,
) -> None:
    someone_else = make_dataset(uuid4())
    store_datasets(unit_of_work_factory, someone_else)
    body = listing(
        make_record("urn:catalog", catalog="urn:unknown-catalog"),
        make_record("urn:nocatalog", catalog=None),
        make_record("urn:badid", local_id="not-a-uuid"),
        make_record("urn:foreign", local_id=someone_else.id),
        {"identifier": ["not", "a", "string"]},
        make_record("urn:good"),
    )

    result = _sync_all(body, batch_factory, owner)

    assert result.read == 6
    assert result.skipped == 5
    assert result.created == 1
    assert [d.registry_identifier for d in list_datasets(unit_of_work_factory, owner)] == [
        "urn:good"
    ]
    assert load_dataset(unit_of_work_factory, someone_else.id).blob == someone_else.blob


def test_registry_error_rolls_back_and_propagates(
    unit_of_work_factory: UowFactory,
    batch_factory: BatchFactory,
    owner: UUID,
) -> None:
    client = make_metax_client(lambda _request: json_response(403, b""))

    with pytest.raises(RegistryAPIError):
        fetch_all(client, batch_factory=batch_factory, uid=owner, timeout=TIMEOUT)

    assert _stamp(unit_of_work_factory, owner) is None


def test_fetch_since_sends_lower_bound(batch_factory: BatchFactory, owner: UUID) -> None:
    requests: list[httpx.Request] = []
    client = make_metax_client(listing_handler(b"[]", requests=requests))

    fetch_since(
        client,
        batch_factory=batch_factory,
        uid=owner,
        identity="user@idp",
        since=MAY,
        timeout=TIMEOUT,
    )

    (request,) = requests
    assert request.headers["If-Modified-Since"] == "Wed, 01 May 2024 00:00:00 GMT"
    assert request.url.params["metadata_provider_user"] == "user@idp"


def test_fetch_is_throttled_and_uses_last_sync(
    unit_of_work_factory: UowFactory,
    batch_factory: BatchFactory,
    owner: UUID,
) -> None:
    requests: list[httpx.Request] = []
    client = make_metax_client(listing_handler(b"[]", requests=requests))

    def run(gate: RetryGate) -> None:
        fetch(
            client,
            batch_factory=batch_factory,
            unit_of_work_factory=unit_of_work_factory,
            gate=gate,
            uid=owner,
            timeout=TIMEOUT,
        )

    run(RetryGate(timedelta(seconds=10)))
    with pytest.raises(TooSoonError):
        run(RetryGate(timedelta(seconds=10)))
    run(RetryGate(timedelta(0)))

    assert len(requests) == 2
    assert "If-Modified-Since" not in requests[0].headers
    assert "If-Modified-Since" in requests[1].headers
    assert requests[1].url.params["owner_id"] == str(owner)


def test_blob_written_verbatim(
    unit_of_work_factory: UowFactory,
    batch_factory: BatchFactory,
    owner: UUID,
) -> None:
    record = make_record("urn:1")
    record["unmodelled"] = {"kept": [1, 2, 3]}

    _sync_all(listing(record), batch_factory, owner)

    (dataset,) = list_datasets(unit_of_work_factory, owner)
    assert dataset.blob == to_blob(record)


def test_pass_log_lines_share_sync_id(
    batch_factory: BatchFactory,
    owner: UUID,
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level("INFO", logger="qvain_sync.domain.synchronization")

    result = _sync_all(listing(make_record("urn:1")), batch_factory, owner)

    messages = [
        record.getMessage()
        for record in caplog.records
        if record.name == "qvain_sync.domain.synchronization"
    ]
    assert len(messages) == 2
    assert all(message.startswith(f"[sync {result.sync_id}]") for message in messages)
    assert "successful sync" in messages[-1]
