"""
Storage Services Package

Provides the abstract storage interface and its two implementations:
the structured (SQLite) store used by default and the flat (JSON blob)
store used as a fallback.
"""

from household_ledger.services.storage.interface import (
    SETTINGS_KEY,
    BackendUnavailable,
    PersistenceFailure,
    StorageBackend,
    StorageError,
)
from household_ledger.services.storage.flat_store import FlatStore
from household_ledger.services.storage.structured_store import (
    SCHEMA_VERSION,
    StructuredStore,
)

__all__ = [
    # Interface
    "SETTINGS_KEY",
    "StorageBackend",
    # Exceptions
    "BackendUnavailable",
    "PersistenceFailure",
    "StorageError",
    # Implementations
    "FlatStore",
    "SCHEMA_VERSION",
    "StructuredStore",
]
