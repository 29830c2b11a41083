"""Draft sanitization and validation package."""

from household_ledger.validation.sanitizer import (
    record_problems,
    sanitize_amount,
    sanitize_category,
    sanitize_date,
    sanitize_kind,
    sanitize_note,
    strip_markup,
    validate_category_name,
    validate_transaction,
)

__all__ = [
    "record_problems",
    "sanitize_amount",
    "sanitize_category",
    "sanitize_date",
    "sanitize_kind",
    "sanitize_note",
    "strip_markup",
    "validate_category_name",
    "validate_transaction",
]
