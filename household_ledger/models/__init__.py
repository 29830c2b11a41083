"""
Data Models Package

This package contains all Pydantic models used by the household ledger.
Everything stored, snapshotted or returned to collaborators conforms
to these schemas.
"""

from household_ledger.models.transaction import (
    DEFAULT_CATEGORIES,
    FALLBACK_CATEGORIES,
    MAX_AMOUNT,
    MAX_CATEGORY_LENGTH,
    MAX_NOTE_LENGTH,
    MAX_YEAR,
    MIN_AMOUNT,
    MIN_YEAR,
    CategoryRegistry,
    FilterState,
    Transaction,
    TransactionKind,
    utc_now,
)
from household_ledger.models.ledger import (
    SNAPSHOT_VERSION,
    BackupRecord,
    BatchResult,
    FieldError,
    IntegrityIssue,
    IntegrityReport,
    LedgerStats,
    MonthlyTotals,
    RepairReport,
    RowError,
    SettingsRecord,
    Snapshot,
    Summary,
    ValidationResult,
)
from household_ledger.models.audit import AuditEvent, AuditSeverity

__all__ = [
    # Limits and defaults
    "DEFAULT_CATEGORIES",
    "FALLBACK_CATEGORIES",
    "MAX_AMOUNT",
    "MAX_CATEGORY_LENGTH",
    "MAX_NOTE_LENGTH",
    "MAX_YEAR",
    "MIN_AMOUNT",
    "MIN_YEAR",
    "SNAPSHOT_VERSION",
    "utc_now",
    # Transaction models
    "CategoryRegistry",
    "FilterState",
    "Transaction",
    "TransactionKind",
    # Ledger models
    "BackupRecord",
    "BatchResult",
    "FieldError",
    "IntegrityIssue",
    "IntegrityReport",
    "LedgerStats",
    "MonthlyTotals",
    "RepairReport",
    "RowError",
    "SettingsRecord",
    "Snapshot",
    "Summary",
    "ValidationResult",
    # Audit models
    "AuditEvent",
    "AuditSeverity",
]
