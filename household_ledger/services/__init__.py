"""Services package."""

from household_ledger.services.storage import (
    BackendUnavailable,
    FlatStore,
    PersistenceFailure,
    StorageBackend,
    StorageError,
    StructuredStore,
)

__all__ = [
    "BackendUnavailable",
    "FlatStore",
    "PersistenceFailure",
    "StorageBackend",
    "StorageError",
    "StructuredStore",
]
