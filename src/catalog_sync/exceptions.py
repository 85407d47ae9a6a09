"""Exception hierarchy for the catalog synchronizer."""

from enum import Enum


class CatalogSyncError(Exception):
    """Base class for all sync errors."""


class RemoteErrorKind(str, Enum):
    """Why a remote API call failed."""

    UNREACHABLE = "unreachable"
    BAD_STATUS = "bad_status"
    MALFORMED_RESPONSE = "malformed_response"


class RemoteUnavailable(CatalogSyncError):
    """The remote catalog API could not produce a usable response."""

    def __init__(
        self,
        kind: RemoteErrorKind,
        endpoint: str,
        message: str = "",
        status_code: int | None = None,
    ):
        self.kind = kind
        self.endpoint = endpoint
        self.status_code = status_code
        super().__init__(message or f"{kind.value} calling {endpoint}")


class ValidationFailure(CatalogSyncError):
    """Batch setup cannot proceed, e.g. remote categories are unfetchable."""


class ItemProcessingError(CatalogSyncError):
    """A single product failed to reconcile."""


class PersistenceFailure(CatalogSyncError):
    """The local catalog store rejected a write."""


class SyncAlreadyRunning(CatalogSyncError):
    """A background run is already active."""


class DispatchError(CatalogSyncError):
    """The out-of-band dispatch mechanism is unavailable."""
