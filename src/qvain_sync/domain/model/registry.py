"""Registry-side views of datasets.

Every field is optional: the registry omits fields freely and a missing value
must stay distinguishable from a zero value.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime

APP_TAG = "qvain"


@dataclass(frozen=True, slots=True)
class RawRecord:
    """One undecoded dataset element from a streamed registry response."""

    data: bytes


@dataclass(frozen=True, slots=True, kw_only=True)
class Linkage:
    """The application's private object embedded in a registry record."""

    app_tag: str | None = None
    record_id: str | None = None

    @property
    def is_ours(self) -> bool:
        return self.app_tag == APP_TAG


@dataclass(frozen=True, slots=True, kw_only=True)
class RecordView:
    """The fields of a registry record this engine reads."""

    identifier: str | None = None
    linkage: Linkage | None = None
    new_version_identifier: str | None = None
    catalog_identifier: str | None = None
    date_created: datetime | None = None
    date_modified: datetime | None = None

    @property
    def modification_time(self) -> datetime | None:
        return self.date_modified or self.date_created


@dataclass(frozen=True, slots=True, kw_only=True)
class StoredRecord:
    """The registry's answer to a create or update.

    ``new_version_identifier`` is set when the registry forked a new version
    instead of updating the record in place.
    """

    identifier: str | None = None
    new_version_identifier: str | None = None
    modified: datetime | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class RegistryQuery:
    """Filters for a dataset listing.

    Exactly one of ``owner_id`` and ``identity`` is used; an external identity
    takes precedence since it survives local re-registration.
    """

    owner_id: str | None = None
    identity: str | None = None
    since: datetime | None = None

    def __post_init__(self) -> None:
        if bool(self.owner_id) == bool(self.identity):
            raise ValueError("query needs exactly one of owner id or external identity")

    @classmethod
    def for_user(
        cls,
        owner_id: str,
        identity: str | None = None,
        *,
        since: datetime | None = None,
    ) -> RegistryQuery:
        if identity:
            return cls(identity=identity, since=since)
        return cls(owner_id=owner_id, since=since)
