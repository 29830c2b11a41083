"""
Ledger State and Result Models

Models for everything the ledger derives, persists next to the
transactions, or hands back to callers:
- Validation results (field errors, per-row batch errors)
- Derived aggregates (summary, monthly totals)
- Persisted non-transaction state (stats, settings record)
- Snapshots and backups
- Integrity / repair reports
"""

import datetime as dt
from typing import Any, Optional

from pydantic import BaseModel, Field

from household_ledger.models.transaction import (
    CategoryRegistry,
    FilterState,
    Transaction,
    utc_now,
)


SNAPSHOT_VERSION = "2.0.0"


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class FieldError(BaseModel):
    """A single problem with one field of a draft."""
    
    field: str = Field(
        ...,
        description="Field with the issue"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    
    def __str__(self) -> str:
        return f"{self.field}: {self.message}"


class ValidationResult(BaseModel):
    """
    Result of sanitizing and validating one raw draft.
    
    `data` holds the canonical field values and is only meaningful
    when `is_valid` is True.
    """
    
    data: dict[str, Any] = Field(default_factory=dict)
    errors: list[FieldError] = Field(default_factory=list)
    
    @property
    def is_valid(self) -> bool:
        return not self.errors


class RowError(BaseModel):
    """Validation errors of one row of a batch (rows are 1-based)."""
    
    row: int = Field(ge=1)
    errors: list[FieldError]
    
    def __str__(self) -> str:
        return f"row {self.row}: " + ", ".join(str(e) for e in self.errors)


class BatchResult(BaseModel):
    """Outcome of a batch addition."""
    
    added: list[Transaction] = Field(default_factory=list)
    errors: list[RowError] = Field(default_factory=list)


# =============================================================================
# AGGREGATES
# =============================================================================

class Summary(BaseModel):
    """Totals over the whole transaction collection."""
    
    income: int = 0
    expense: int = 0
    balance: int = 0
    transaction_count: int = 0
    income_count: int = 0
    expense_count: int = 0
    avg_income: float = 0.0
    avg_expense: float = 0.0


class MonthlyTotals(BaseModel):
    """Accumulated income and expense of one calendar month."""
    
    income: int = 0
    expense: int = 0
    
    @property
    def balance(self) -> int:
        return self.income - self.expense


# =============================================================================
# PERSISTED STATE
# =============================================================================

class LedgerStats(BaseModel):
    """Bookkeeping statistics persisted with the settings."""
    
    total_transactions: int = 0
    created_at: dt.datetime = Field(default_factory=utc_now)
    last_modified: Optional[dt.datetime] = None
    oldest_transaction: Optional[dt.date] = None
    newest_transaction: Optional[dt.date] = None


class SettingsRecord(BaseModel):
    """
    Non-transaction state, stored independently of the transactions.
    
    Settings change rarely per byte compared to transactions, so they
    get their own record instead of riding along with every write.
    """
    
    categories: CategoryRegistry = Field(default_factory=CategoryRegistry)
    filters: FilterState = Field(default_factory=FilterState)
    id_counter: int = Field(
        default=0,
        ge=0,
        description="Number of transaction ids ever issued by this ledger"
    )
    stats: LedgerStats = Field(default_factory=LedgerStats)
    updated_at: dt.datetime = Field(default_factory=utc_now)


class Snapshot(BaseModel):
    """
    Full serialized ledger state.
    
    Produced and consumed by export/import and backup collaborators.
    Must round-trip losslessly through Ledger.snapshot()/restore().
    """
    
    version: str = SNAPSHOT_VERSION
    timestamp: dt.datetime = Field(default_factory=utc_now)
    transactions: list[Transaction] = Field(default_factory=list)
    categories: CategoryRegistry = Field(default_factory=CategoryRegistry)
    filters: FilterState = Field(default_factory=FilterState)
    id_counter: int = Field(default=0, ge=0)
    stats: LedgerStats = Field(default_factory=LedgerStats)


class BackupRecord(BaseModel):
    """One entry of the append-only backup log."""
    
    id: Optional[int] = Field(
        default=None,
        description="Sequence number assigned by the backend"
    )
    timestamp: dt.datetime = Field(default_factory=utc_now)
    version: str = SNAPSHOT_VERSION
    payload: Snapshot


# =============================================================================
# INTEGRITY
# =============================================================================

class IntegrityIssue(BaseModel):
    """A single problem found by the integrity check."""
    
    issue_type: str = Field(
        ...,
        pattern="^(duplicate_id|malformed|unknown_category)$"
    )
    transaction_id: Optional[str] = None
    field: Optional[str] = None
    message: str


class IntegrityReport(BaseModel):
    """Result of Ledger.validate_integrity()."""
    
    issues: list[IntegrityIssue] = Field(default_factory=list)
    duplicate_ids: list[str] = Field(default_factory=list)
    total_transactions: int = 0
    unique_ids: int = 0
    category_count: int = 0
    
    @property
    def is_valid(self) -> bool:
        return not self.issues


class RepairReport(BaseModel):
    """Result of Ledger.repair(); `actions` lists every change made."""
    
    actions: list[str] = Field(default_factory=list)
    removed_count: int = 0
    final_count: int = 0
    
    @property
    def repairs_count(self) -> int:
        return len(self.actions)
