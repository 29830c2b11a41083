"""
Draft Sanitization and Validation

DESIGN DECISION: Validation happens in two passes over a raw draft:

PASS 1 - SANITIZE:
- Strip markup from free text
- Normalise whitespace
- Coerce amounts, dates and kinds to their canonical types

PASS 2 - VALIDATE:
- Required field presence
- Amount and date ranges
- Category name rules
- Category membership in the registry (when a registry is given)

Everything here is a pure function. Nothing touches ledger state,
so a failed validation can never leave a partial mutation behind.

IMPORTANT: Out-of-range values are reported, never clamped.
"""

import datetime as dt
import math
import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Mapping, Optional

from household_ledger.models.ledger import FieldError, ValidationResult
from household_ledger.models.transaction import (
    MAX_AMOUNT,
    MAX_CATEGORY_LENGTH,
    MAX_NOTE_LENGTH,
    MAX_YEAR,
    MIN_AMOUNT,
    MIN_YEAR,
    CategoryRegistry,
    Transaction,
    TransactionKind,
)


_BLOCK_TAGS = re.compile(
    r"<(script|iframe|object|embed|style)\b[^<]*(?:(?!</\1>)<[^<]*)*</\1>",
    re.IGNORECASE,
)
_LINK_TAG = re.compile(r"<link\b[^>]*>", re.IGNORECASE)
_JS_PROTOCOL = re.compile(r"javascript:", re.IGNORECASE)
_EVENT_HANDLER_ATTR = re.compile(r"on\w+\s*=", re.IGNORECASE)
_ANY_TAG = re.compile(r"<[^>]*>")
_WHITESPACE = re.compile(r"\s+")
_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
# Unicode word characters (letters of any script, digits, underscore), hyphen, space
_CATEGORY_CHARS = re.compile(r"^[\w\- ]+$")


# =============================================================================
# SANITIZERS
# =============================================================================

def strip_markup(value: Any) -> str:
    """Remove HTML tags, script blocks and inline handlers from text."""
    if not isinstance(value, str):
        return ""
    
    text = _BLOCK_TAGS.sub("", value)
    text = _LINK_TAG.sub("", text)
    text = _JS_PROTOCOL.sub("", text)
    text = _EVENT_HANDLER_ATTR.sub("", text)
    return _ANY_TAG.sub("", text)


def sanitize_note(value: Any) -> str:
    return strip_markup(value).strip()


def sanitize_category(value: Any) -> str:
    """Strip markup and collapse whitespace runs into single spaces."""
    return _WHITESPACE.sub(" ", strip_markup(value)).strip()


def sanitize_kind(value: Any) -> Optional[TransactionKind]:
    if isinstance(value, TransactionKind):
        return value
    if not isinstance(value, str):
        return None
    try:
        return TransactionKind(value.strip().lower())
    except ValueError:
        return None


def sanitize_amount(value: Any) -> Optional[int]:
    """
    Coerce an amount to whole currency units.
    
    Accepts int, Decimal, float and numeric strings (with thousands
    separators). Fractions are rounded half-up. Returns None when the
    value is not a finite number.
    """
    if isinstance(value, bool) or value is None:
        return None
    
    if isinstance(value, int):
        return value
    
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        number = Decimal(str(value))
    elif isinstance(value, Decimal):
        number = value
    elif isinstance(value, str):
        cleaned = value.strip().replace(",", "").replace("_", "")
        if not cleaned:
            return None
        try:
            number = Decimal(cleaned)
        except InvalidOperation:
            return None
    else:
        return None
    
    if not number.is_finite():
        return None
    # Beyond the decimal context precision quantize() fails; any such value is out of range
    if number.adjusted() >= len(str(MAX_AMOUNT)):
        return -(MAX_AMOUNT + 1) if number.is_signed() else MAX_AMOUNT + 1
    return int(number.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def sanitize_date(value: Any) -> Optional[dt.date]:
    """
    Coerce an ISO date (or date/datetime object) to a date.
    
    Returns None for anything that is not a real calendar date
    within MIN_YEAR..MAX_YEAR.
    """
    if isinstance(value, dt.datetime):
        parsed = value.date()
    elif isinstance(value, dt.date):
        parsed = value
    elif isinstance(value, str):
        text = strip_markup(value).strip()
        if not _ISO_DATE.match(text):
            return None
        try:
            parsed = dt.date.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    
    if not MIN_YEAR <= parsed.year <= MAX_YEAR:
        return None
    return parsed


# =============================================================================
# VALIDATORS
# =============================================================================

def validate_category_name(value: Any) -> tuple[str, list[FieldError]]:
    """
    Sanitize a category name and check the registry naming rules.
    
    Returns: (sanitized_name, list_of_errors)
    """
    name = sanitize_category(value)
    errors = []
    
    if not name:
        errors.append(FieldError(
            field="category",
            message="Category is required",
        ))
    elif len(name) > MAX_CATEGORY_LENGTH:
        errors.append(FieldError(
            field="category",
            message=f"Category must be at most {MAX_CATEGORY_LENGTH} characters",
        ))
    elif not _CATEGORY_CHARS.match(name):
        errors.append(FieldError(
            field="category",
            message="Category may only contain letters, digits, spaces, '-' and '_'",
        ))
    
    return name, errors


def validate_transaction(
    raw: Mapping[str, Any],
    categories: Optional[CategoryRegistry] = None,
) -> ValidationResult:
    """
    Sanitize and validate a raw transaction draft.
    
    Args:
        raw: Mapping with kind/date/category/amount/note. The legacy keys
             `type` and `description` are accepted for kind and note.
        categories: When given, the category must exist for the kind.
        
    Returns:
        ValidationResult with canonical `data` or the field errors found
    """
    data: dict[str, Any] = {}
    errors: list[FieldError] = []
    
    parsed_date = sanitize_date(raw.get("date"))
    if parsed_date is None:
        errors.append(FieldError(
            field="date",
            message=f"Date must be a valid YYYY-MM-DD date between {MIN_YEAR} and {MAX_YEAR}",
        ))
    else:
        data["date"] = parsed_date
    
    kind = sanitize_kind(raw.get("kind", raw.get("type")))
    if kind is None:
        errors.append(FieldError(
            field="kind",
            message="Kind must be 'income' or 'expense'",
        ))
    else:
        data["kind"] = kind
    
    category, category_errors = validate_category_name(raw.get("category"))
    errors.extend(category_errors)
    if not category_errors:
        if (
            categories is not None
            and kind is not None
            and not categories.contains(kind, category)
        ):
            errors.append(FieldError(
                field="category",
                message=f"Unknown {kind.value} category: {category}",
            ))
        else:
            data["category"] = category
    
    amount = sanitize_amount(raw.get("amount"))
    if amount is None:
        errors.append(FieldError(
            field="amount",
            message="Amount must be a number",
        ))
    elif amount < MIN_AMOUNT:
        errors.append(FieldError(
            field="amount",
            message=f"Amount must be at least {MIN_AMOUNT}",
        ))
    elif amount > MAX_AMOUNT:
        errors.append(FieldError(
            field="amount",
            message=f"Amount must be at most {MAX_AMOUNT:,}",
        ))
    else:
        data["amount"] = amount
    
    note = sanitize_note(raw.get("note", raw.get("description")))
    if len(note) > MAX_NOTE_LENGTH:
        errors.append(FieldError(
            field="note",
            message=f"Note must be at most {MAX_NOTE_LENGTH} characters",
        ))
    else:
        data["note"] = note
    
    return ValidationResult(data=data, errors=errors)


def record_problems(transaction: Transaction) -> list[FieldError]:
    """
    Check an already-typed stored record against the field rules.
    
    Used by the integrity check on records that were loaded from
    storage or a snapshot rather than created through validation.
    """
    problems = []
    
    if not transaction.id or not transaction.id.strip():
        problems.append(FieldError(field="id", message="Missing id"))
    if not MIN_YEAR <= transaction.date.year <= MAX_YEAR:
        problems.append(FieldError(
            field="date",
            message=f"Date {transaction.date} outside {MIN_YEAR}-{MAX_YEAR}",
        ))
    if not transaction.category:
        problems.append(FieldError(field="category", message="Missing category"))
    if not MIN_AMOUNT <= transaction.amount <= MAX_AMOUNT:
        problems.append(FieldError(
            field="amount",
            message=f"Amount {transaction.amount} out of range",
        ))
    
    return problems
