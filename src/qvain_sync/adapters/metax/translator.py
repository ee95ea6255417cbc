"""Translate Metax payloads into domain views."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from pydantic import ValidationError

from qvain_sync.domain.errors import RecordDecodeError
from qvain_sync.domain.model import Linkage, RecordView, StoredRecord

from .schema import RegistryRecord, StoreResponse

if TYPE_CHECKING:
    from .schema import Editor


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _linkage_from_editor(editor: Editor | None) -> Linkage | None:
    if editor is None:
        return None
    return Linkage(
        app_tag=editor.identifier,
        record_id=editor.record_id,
    )


def _to_view(record: RegistryRecord) -> RecordView:
    new_version = record.new_version_created
    return RecordView(
        identifier=record.identifier,
        linkage=_linkage_from_editor(record.editor),
        new_version_identifier=new_version.identifier if new_version else None,
        catalog_identifier=record.data_catalog.identifier if record.data_catalog else None,
        date_created=_as_utc(record.date_created),
        date_modified=_as_utc(record.date_modified),
    )


def parse_record(data: bytes) -> RecordView:
    """Decode the fields of one Metax record this engine reads.

    Raises:
        RecordDecodeError: the element is not a JSON object or a field has the
            wrong shape.
    """
    try:
        record = RegistryRecord.model_validate_json(data)
    except ValidationError as exc:
        msg = f"can't decode registry record: {exc.error_count()} errors"
        raise RecordDecodeError(msg) from exc
    return _to_view(record)


def parse_store_response(data: bytes) -> StoredRecord:
    """Decode Metax's answer to a create or update.

    Raises:
        RecordDecodeError: the body is not a JSON object.
    """
    try:
        response = StoreResponse.model_validate_json(data)
    except ValidationError as exc:
        raise RecordDecodeError("can't decode store response") from exc
    return StoredRecord(
        identifier=response.identifier,
        new_version_identifier=response.new_version_identifier,
        modified=_as_utc(response.date_modified or response.date_created),
    )


@dataclass(frozen=True, slots=True)
class Identifiers:
    """Identifiers embedded in a stored dataset blob."""

    registry_id: str | None = None
    new_version_id: str | None = None
    local_id: str | None = None


def get_identifiers(blob: bytes) -> Identifiers:
    """Return the registry id, new-version id and embedded local id of ``blob``.

    A blob that can't be decoded yields empty identifiers.
    """
    if not blob:
        return Identifiers()
    try:
        view = parse_record(blob)
    except RecordDecodeError:
        return Identifiers()
    return Identifiers(
        registry_id=view.identifier,
        new_version_id=view.new_version_identifier,
        local_id=view.linkage.record_id if view.linkage and view.linkage.is_ours else None,
    )
