"""Relate registry records to local datasets.

A record is ours when its embedded linkage object carries the application
tag and a local id. Records without such a linkage (created directly in the
registry or by another tool) are matched by registry identifier against the
owner's existing datasets before they are treated as new.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING
from uuid import UUID

from qvain_sync.domain.errors import InvalidRecordIdError
from qvain_sync.domain.model import is_nil

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime

    from qvain_sync.domain.model import Dataset, RecordView

log = getLogger(__name__)


@dataclass(frozen=True, slots=True)
class LinkageDecision:
    """Outcome of linking one record.

    ``local_id`` is ``None`` exactly when the record is new; the caller mints
    the id for it.
    """

    local_id: UUID | None
    is_new: bool

    @classmethod
    def existing(cls, local_id: UUID) -> LinkageDecision:
        return cls(local_id=local_id, is_new=False)

    @classmethod
    def new(cls) -> LinkageDecision:
        return cls(local_id=None, is_new=True)


@dataclass(slots=True)
class LocalIndex:
    """Lookup tables over one owner's local datasets for a single pass."""

    by_identifier: dict[str, UUID] = field(default_factory=dict)
    synced: dict[UUID, datetime | None] = field(default_factory=dict)

    @classmethod
    def build(cls, datasets: Iterable[Dataset]) -> LocalIndex:
        index = cls()
        for dataset in datasets:
            index.synced[dataset.id] = dataset.synced
            identifier = dataset.registry_identifier
            if identifier is None:
                continue
            existing = index.by_identifier.get(identifier)
            if existing is not None:
                log.warning(
                    "registry identifier %s maps to several datasets, keeping %s over %s",
                    identifier,
                    existing,
                    dataset.id,
                )
                continue
            index.by_identifier[identifier] = dataset.id
        return index

    def remember(self, identifier: str | None, local_id: UUID, synced: datetime | None) -> None:
        """Record a dataset created earlier in the same pass."""
        self.synced[local_id] = synced
        if identifier is not None:
            self.by_identifier.setdefault(identifier, local_id)

    def mark_synced(self, local_id: UUID, synced: datetime) -> None:
        current = self.synced.get(local_id)
        if current is None or synced > current:
            self.synced[local_id] = synced

    def knows(self, local_id: UUID) -> bool:
        return local_id in self.synced

    def synced_at(self, local_id: UUID) -> datetime | None:
        return self.synced.get(local_id)


def parse_local_id(value: str) -> UUID:
    """Parse a local id from a linkage object, rejecting the all-zero id."""
    try:
        local_id = UUID(value)
    except (TypeError, ValueError) as exc:
        raise InvalidRecordIdError(value) from exc
    if is_nil(local_id):
        raise InvalidRecordIdError(value)
    return local_id


def linked_id(record: RecordView) -> UUID | None:
    """Return the local id carried by the record's linkage, if it is ours."""
    linkage = record.linkage
    if linkage is None or not linkage.is_ours:
        return None
    if linkage.record_id is None:
        return None
    return parse_local_id(linkage.record_id)


def classify(record: RecordView, index: LocalIndex) -> LinkageDecision:
    """Decide whether ``record`` updates a local dataset or is new.

    Raises:
        InvalidRecordIdError: the linkage is ours but its local id is malformed.
    """
    local_id = linked_id(record)
    if local_id is not None:
        return LinkageDecision.existing(local_id)
    if record.identifier is not None:
        matched = index.by_identifier.get(record.identifier)
        if matched is not None:
            return LinkageDecision.existing(matched)
    return LinkageDecision.new()
