"""
Core Data Models for Household Ledger

These models define the schemas for the records the ledger owns.
They are designed to:
1. Enforce type safety at runtime
2. Be serializable for both storage backends and snapshots
3. Stay lenient on ranges - range and registry rules live in the
   sanitizer so that damaged stored records can still be loaded,
   reported by the integrity check and repaired

DESIGN DECISION: Transactions carry an immutable identity (id, created_at)
and mutable fields. The ledger replaces whole records on update;
collaborators only ever see copies.
"""

import datetime as dt
from enum import Enum
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# LIMITS
# =============================================================================

MIN_AMOUNT = 1
MAX_AMOUNT = 99_999_999
MAX_NOTE_LENGTH = 200
MAX_CATEGORY_LENGTH = 50
MIN_YEAR = 1900
MAX_YEAR = 2100


def utc_now() -> dt.datetime:
    """Current time as a timezone-aware UTC datetime."""
    return dt.datetime.now(dt.timezone.utc)


# =============================================================================
# ENUMS
# =============================================================================

class TransactionKind(str, Enum):
    """Direction of a transaction."""
    INCOME = "income"
    EXPENSE = "expense"


# =============================================================================
# TRANSACTION
# =============================================================================

class Transaction(BaseModel):
    """
    A single dated income or expense entry.
    
    Created only through the ledger's validated add path; the model
    itself only checks types.
    """
    
    id: str = Field(
        ...,
        description="Opaque unique identifier, never reused"
    )
    date: dt.date = Field(
        ...,
        description="Calendar date of the entry"
    )
    kind: TransactionKind
    category: str = Field(
        ...,
        description="Category name, must exist in the registry for `kind`"
    )
    amount: int = Field(
        ...,
        description="Whole currency units"
    )
    note: str = Field(
        default="",
        description="Free text note"
    )
    created_at: dt.datetime = Field(default_factory=utc_now)
    updated_at: dt.datetime = Field(default_factory=utc_now)
    
    @property
    def month(self) -> str:
        """Calendar month of the entry as YYYY-MM."""
        return self.date.strftime("%Y-%m")
    
    def to_record(self) -> dict[str, Any]:
        """Convert to a JSON-compatible dict for storage and snapshots."""
        return self.model_dump(mode="json")


# =============================================================================
# CATEGORIES
# =============================================================================

DEFAULT_CATEGORIES: dict[TransactionKind, tuple[str, ...]] = {
    TransactionKind.INCOME: (
        "Salary", "Bonus", "Side Job", "Investment", "Other Income",
    ),
    TransactionKind.EXPENSE: (
        "Food", "Transport", "Utilities", "Communication", "Entertainment",
        "Medical", "Clothing", "Daily Goods", "Other Expense",
    ),
}

# Used by repair() for transactions whose category vanished
FALLBACK_CATEGORIES: dict[TransactionKind, str] = {
    TransactionKind.INCOME: "Other Income",
    TransactionKind.EXPENSE: "Other Expense",
}


class CategoryRegistry(BaseModel):
    """
    Two ordered sets of category names, one per transaction kind.
    
    Serialized as {"income": [...], "expense": [...]}.
    """
    
    income: list[str] = Field(
        default_factory=lambda: list(DEFAULT_CATEGORIES[TransactionKind.INCOME])
    )
    expense: list[str] = Field(
        default_factory=lambda: list(DEFAULT_CATEGORIES[TransactionKind.EXPENSE])
    )
    
    @field_validator('income', 'expense')
    @classmethod
    def drop_duplicates(cls, v: list[str]) -> list[str]:
        """Keep the first occurrence of every name, preserving order."""
        seen: set[str] = set()
        unique = []
        for name in v:
            if name not in seen:
                seen.add(name)
                unique.append(name)
        return unique
    
    def names(self, kind: TransactionKind) -> list[str]:
        """The live list for a kind (mutating it mutates the registry)."""
        return self.income if kind == TransactionKind.INCOME else self.expense
    
    def contains(self, kind: TransactionKind, name: str) -> bool:
        return name in self.names(kind)
    
    def all_names(self) -> list[str]:
        return [*self.income, *self.expense]


# =============================================================================
# FILTERS
# =============================================================================

class FilterState(BaseModel):
    """
    Conjunctive filter over the transaction collection.
    
    Missing or empty values mean "no constraint". Filters only shape the
    derived view; they never mutate stored data.
    """
    model_config = ConfigDict(str_strip_whitespace=True)
    
    kind: Optional[TransactionKind] = None
    category: Optional[str] = None
    month: Optional[str] = Field(
        default=None,
        pattern=r"^\d{4}-(0[1-9]|1[0-2])$",
        description="Calendar month as YYYY-MM"
    )
    
    @field_validator('kind', 'category', 'month', mode='before')
    @classmethod
    def empty_is_none(cls, v: Any) -> Any:
        """Treat empty strings as 'no constraint'."""
        if isinstance(v, str) and not v.strip():
            return None
        return v
    
    def merged(self, changes: Mapping[str, Any]) -> "FilterState":
        """Return a new filter with `changes` applied on top of this one."""
        data = self.model_dump()
        data.update(changes)
        return FilterState.model_validate(data)
    
    def matches(self, transaction: Transaction) -> bool:
        if self.kind is not None and transaction.kind != self.kind:
            return False
        if self.category is not None and transaction.category != self.category:
            return False
        if self.month is not None and transaction.month != self.month:
            return False
        return True
