"""Locally owned dataset records."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

if TYPE_CHECKING:
    from datetime import datetime

METAX_FAMILY = 2
SCHEMA_IDA = "metax-ida"
SCHEMA_ATT = "metax-att"


def new_id() -> UUID:
    return uuid4()


def is_nil(value: UUID | None) -> bool:
    """Return whether ``value`` is missing or the all-zero id."""
    return value is None or value.int == 0


@dataclass(eq=False, kw_only=True)
class Dataset:
    """A dataset owned by a local user.

    ``blob`` is the registry's JSON representation, stored verbatim. A new
    version forked by the registry becomes a separate row whose ``based_on``
    points at the original.
    """

    id: UUID = field(default_factory=new_id)
    creator: UUID
    owner: UUID

    created: datetime | None = None
    modified: datetime | None = None
    synced: datetime | None = None

    published: bool = False
    valid: bool = False

    family: int = METAX_FAMILY
    schema: str = SCHEMA_IDA
    blob: bytes = b"{}"

    based_on: UUID | None = None
    seq: int = 0

    def __post_init__(self) -> None:
        if self.family < 0:
            raise ValueError("need schema family for dataset")
        if not self.schema:
            raise ValueError("need schema name for dataset")

    @property
    def registry_identifier(self) -> str | None:
        """Return the registry identifier embedded in the blob, if any."""
        try:
            payload = json.loads(self.blob)
        except ValueError:
            return None
        if not isinstance(payload, dict):
            return None
        identifier = payload.get("identifier")
        if isinstance(identifier, str) and identifier:
            return identifier
        return None


CATALOG_SCHEMAS: dict[str, str] = {
    "urn:nbn:fi:att:data-catalog-ida": SCHEMA_IDA,
    "urn:nbn:fi:att:data-catalog-att": SCHEMA_ATT,
}


def schema_for_catalog(catalog_identifier: str | None) -> str | None:
    """Map a registry data catalog to the local schema name."""
    if catalog_identifier is None:
        return None
    return CATALOG_SCHEMAS.get(catalog_identifier)
