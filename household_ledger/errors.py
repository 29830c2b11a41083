"""
Ledger Error Taxonomy

Nothing in the ledger is fatal to the process:
- ValidationError: bad input, nothing was mutated; the caller fixes the input
- NotFoundError: operation on a missing transaction or category
- CategoryInUseError: removal needs a replacement category; carries the count
- LedgerNotReadyError / LedgerDestroyedError: lifecycle misuse

Storage problems (BackendUnavailable, PersistenceFailure) are handled
inside the ledger and never fail a mutation; see services.storage.
"""

from typing import Iterable, Optional

from household_ledger.models.ledger import FieldError, RowError


class LedgerError(Exception):
    """Base exception for ledger operations."""
    pass


class ValidationError(LedgerError):
    """
    Input failed validation; no mutation was performed.
    
    `errors` lists the field problems, `row_errors` the per-row problems
    of a batch in which no row was valid.
    """
    
    def __init__(
        self,
        errors: Iterable[FieldError] = (),
        row_errors: Iterable[RowError] = (),
        message: Optional[str] = None,
    ):
        self.errors = list(errors)
        self.row_errors = list(row_errors)
        lines = [str(e) for e in self.errors] + [str(r) for r in self.row_errors]
        super().__init__(message or "; ".join(lines) or "Validation failed")
    
    @property
    def fields(self) -> list[str]:
        return [e.field for e in self.errors]


class NotFoundError(LedgerError):
    """The referenced transaction or category does not exist."""
    
    def __init__(self, key: str, what: str = "Transaction"):
        self.key = key
        super().__init__(f"{what} not found: {key}")


class CategoryInUseError(LedgerError):
    """A category still referenced by transactions was asked to be removed."""
    
    def __init__(self, count: int, kind: str, name: str):
        self.count = count
        self.kind = kind
        self.name = name
        super().__init__(
            f"Category '{name}' ({kind}) is used by {count} transaction(s); "
            "a replacement category is required"
        )


class LedgerNotReadyError(LedgerError):
    """The ledger has not been initialized yet."""
    pass


class LedgerDestroyedError(LedgerError):
    """The ledger was destroyed and accepts no further calls."""
    pass
