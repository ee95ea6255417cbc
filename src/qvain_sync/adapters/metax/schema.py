"""Pydantic models describing the Metax dataset payloads.

Only the fields this engine reads are modelled; everything else in a record
is kept verbatim in the raw blob. Every field is optional because Metax
omits fields freely.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, field_validator


def _blank_to_none(value: object) -> object:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return value


class MetaxBaseModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class Editor(MetaxBaseModel):
    """The application's private object inside a Metax record."""

    identifier: str | None = None
    record_id: str | None = None


class DataCatalog(MetaxBaseModel):
    identifier: str | None = None


class NewVersionCreated(MetaxBaseModel):
    identifier: str | None = None

    @field_validator("identifier", mode="before")
    @classmethod
    def blank_identifier(cls, value: object) -> object:
        return _blank_to_none(value)


class RegistryRecord(MetaxBaseModel):
    identifier: str | None = None
    data_catalog: DataCatalog | None = None
    date_created: datetime | None = None
    date_modified: datetime | None = None
    editor: Editor | None = None
    new_version_created: NewVersionCreated | None = None

    @field_validator("identifier", mode="before")
    @classmethod
    def blank_identifier(cls, value: object) -> object:
        return _blank_to_none(value)

    @field_validator("data_catalog", mode="before")
    @classmethod
    def catalog_from_string(cls, value: object) -> object:
        # Older Metax versions return the catalog identifier as a bare string.
        if isinstance(value, str):
            return {"identifier": value}
        return value


class StoreResponse(RegistryRecord):
    """Body of a successful create or update."""

    @property
    def new_version_identifier(self) -> str | None:
        if self.new_version_created is None:
            return None
        return self.new_version_created.identifier
