"""Error taxonomy for synchronization and publication.

Adapters translate transport and storage failures into these types so the
web and CLI layers can map each kind to a precise response.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for all engine errors."""


# Registry / transport --------------------------------------------------------


class RegistryError(SyncError):
    """Raised when talking to the registry fails."""


class RegistryAPIError(RegistryError):
    """The registry answered with an unexpected status code.

    ``original_error`` carries the registry's own error body (if it sent one)
    so callers can surface it for diagnostics.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int,
        original_error: bytes | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.original_error = original_error

    def __str__(self) -> str:
        return f"{self.args[0]} (status: {self.status_code})"


class RegistryTransportError(RegistryError):
    """Network-level failure while talking to the registry."""


class StreamDecodeError(RegistryError):
    """The streamed response is not a well-formed JSON array."""


class DeadlineExceededError(RegistryError):
    """The registry did not deliver the whole stream before the deadline."""


# Protocol contract -----------------------------------------------------------


class ProtocolError(SyncError):
    """A nominally successful registry response lacks data we depend on."""


class InvalidContentTypeError(ProtocolError):
    def __init__(self, content_type: str | None = None) -> None:
        super().__init__(f"invalid content-type: expected json, got {content_type!r}")
        self.content_type = content_type


class EmptyResponseError(ProtocolError):
    """The registry returned no body where one was required."""


class NoIdentifierError(ProtocolError):
    """No registry identifier in a created or updated dataset."""

    def __init__(self) -> None:
        super().__init__("no identifier in dataset")


class EmptyDatasetError(ProtocolError):
    """Refused to send an empty dataset blob to the registry."""

    def __init__(self) -> None:
        super().__init__("dataset is empty")


# Linkage ---------------------------------------------------------------------


class LinkingError(SyncError):
    """A registry record can't be related to a local dataset."""


class InvalidRecordIdError(LinkingError):
    """The embedded linkage object carries a malformed local id."""

    def __init__(self, value: str) -> None:
        super().__init__(f"invalid dataset id: {value!r}")
        self.value = value


class RecordDecodeError(LinkingError):
    """A record's business fields can't be decoded."""


# Local storage ---------------------------------------------------------------


class StorageError(SyncError):
    """Raised by the local dataset store."""


class NotFoundError(StorageError):
    def __init__(self, message: str = "not found") -> None:
        super().__init__(message)


class NotOwnerError(StorageError):
    def __init__(self, message: str = "not owner") -> None:
        super().__init__(message)


class ConstraintViolationError(StorageError):
    """A write violated a uniqueness or integrity constraint."""


# Throttling ------------------------------------------------------------------


class TooSoonError(SyncError):
    """A reconciliation pass was requested before the minimum interval elapsed."""

    def __init__(self, retry_after: float) -> None:
        super().__init__(f"too soon, retry in {retry_after:.1f}s")
        self.retry_after = retry_after


