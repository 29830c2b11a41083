"""Tests for draft sanitization and validation."""

import datetime as dt
from decimal import Decimal

import pytest

from household_ledger.models import (
    MAX_AMOUNT,
    MIN_AMOUNT,
    CategoryRegistry,
    Transaction,
    TransactionKind,
)
from household_ledger.validation import (
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


class TestSanitizers:
    """Tests for the individual sanitizers."""
    
    def test_strip_markup_removes_scripts_and_tags(self):
        text = 'Lunch<script>alert("x")</script> <b>with</b> <a onclick=run()>team</a>'
        assert strip_markup(text) == "Lunch with team"
    
    def test_strip_markup_removes_javascript_protocol(self):
        assert "javascript:" not in strip_markup("javascript:alert(1)")
    
    def test_strip_markup_non_string(self):
        assert strip_markup(None) == ""
        assert strip_markup(42) == ""
    
    def test_sanitize_note_trims(self):
        assert sanitize_note("  coffee  ") == "coffee"
    
    def test_sanitize_category_collapses_whitespace(self):
        assert sanitize_category("  Daily   Goods ") == "Daily Goods"
    
    @pytest.mark.parametrize("value,expected", [
        ("income", TransactionKind.INCOME),
        (" EXPENSE ", TransactionKind.EXPENSE),
        (TransactionKind.INCOME, TransactionKind.INCOME),
        ("transfer", None),
        (None, None),
    ])
    def test_sanitize_kind(self, value, expected):
        assert sanitize_kind(value) == expected
    
    @pytest.mark.parametrize("value,expected", [
        (1200, 1200),
        ("1,234", 1234),
        ("99.5", 100),
        (Decimal("2.5"), 3),
        (10.49, 10),
        ("abc", None),
        ("", None),
        (True, None),
        (None, None),
        (float("nan"), None),
        (float("inf"), None),
    ])
    def test_sanitize_amount(self, value, expected):
        assert sanitize_amount(value) == expected
    
    def test_sanitize_amount_keeps_negative(self):
        """Range checks are the validator's job, not the sanitizer's."""
        assert sanitize_amount("-500") == -500
    
    @pytest.mark.parametrize("value", ["1e30", 1e30, Decimal("1e40"), "99999999.5e3"])
    def test_sanitize_amount_huge_exponent_is_out_of_range(self, value):
        assert sanitize_amount(value) > MAX_AMOUNT
    
    def test_sanitize_amount_huge_negative_is_out_of_range(self):
        assert sanitize_amount("-1e30") < MIN_AMOUNT
    
    @pytest.mark.parametrize("value,expected", [
        ("2024-02-29", dt.date(2024, 2, 29)),
        (dt.date(2024, 1, 1), dt.date(2024, 1, 1)),
        (dt.datetime(2024, 1, 1, 13, 30), dt.date(2024, 1, 1)),
        ("2023-02-29", None),
        ("2024/01/01", None),
        ("next friday", None),
        ("1899-12-31", None),
        ("2101-01-01", None),
        (20240101, None),
    ])
    def test_sanitize_date(self, value, expected):
        assert sanitize_date(value) == expected


class TestCategoryNames:
    """Tests for category name rules."""
    
    def test_valid_name(self):
        name, errors = validate_category_name("  Side   Job ")
        assert name == "Side Job"
        assert errors == []
    
    def test_unicode_letters_allowed(self):
        name, errors = validate_category_name("食費")
        assert errors == []
    
    def test_empty_name(self):
        _, errors = validate_category_name("   ")
        assert errors[0].field == "category"
    
    def test_too_long(self):
        _, errors = validate_category_name("x" * 51)
        assert "50" in errors[0].message
    
    def test_bad_characters(self):
        _, errors = validate_category_name("Food & Drink")
        assert len(errors) == 1


class TestValidateTransaction:
    """Tests for full draft validation."""
    
    def test_valid_draft(self):
        result = validate_transaction({
            "date": "2024-03-15",
            "kind": "expense",
            "category": "Food",
            "amount": "1,200",
            "note": " <i>lunch</i> ",
        })
        assert result.is_valid
        assert result.data == {
            "date": dt.date(2024, 3, 15),
            "kind": TransactionKind.EXPENSE,
            "category": "Food",
            "amount": 1200,
            "note": "lunch",
        }
    
    def test_legacy_keys(self):
        result = validate_transaction({
            "date": "2024-03-15",
            "type": "income",
            "category": "Salary",
            "amount": 300000,
            "description": "March",
        })
        assert result.is_valid
        assert result.data["kind"] == TransactionKind.INCOME
        assert result.data["note"] == "March"
    
    def test_missing_fields_reported_together(self):
        result = validate_transaction({})
        fields = {e.field for e in result.errors}
        assert fields == {"date", "kind", "category", "amount"}
    
    @pytest.mark.parametrize("amount", [0, -1, 100_000_000])
    def test_amount_out_of_range_is_rejected(self, amount):
        result = validate_transaction({
            "date": "2024-03-15", "kind": "expense", "category": "Food", "amount": amount,
        })
        assert [e.field for e in result.errors] == ["amount"]
    
    def test_amount_bounds_are_inclusive(self):
        for amount in (1, 99_999_999):
            result = validate_transaction({
                "date": "2024-03-15", "kind": "expense", "category": "Food", "amount": amount,
            })
            assert result.is_valid
    
    @pytest.mark.parametrize("amount", ["1e30", 1e30, Decimal("-1e40")])
    def test_amount_with_huge_exponent_is_rejected(self, amount):
        result = validate_transaction({
            "date": "2024-03-15", "kind": "expense", "category": "Food", "amount": amount,
        })
        assert [e.field for e in result.errors] == ["amount"]

    def test_note_too_long(self):
        result = validate_transaction({
            "date": "2024-03-15", "kind": "expense", "category": "Food",
            "amount": 1, "note": "n" * 201,
        })
        assert [e.field for e in result.errors] == ["note"]
    
    def test_category_must_exist_for_kind(self):
        registry = CategoryRegistry()
        result = validate_transaction(
            {"date": "2024-03-15", "kind": "income", "category": "Food", "amount": 1},
            registry,
        )
        assert [e.field for e in result.errors] == ["category"]
    
    def test_registry_not_checked_without_registry(self):
        result = validate_transaction(
            {"date": "2024-03-15", "kind": "income", "category": "Anything", "amount": 1},
        )
        assert result.is_valid


class TestRecordProblems:
    """Tests for checks on already-typed records."""
    
    def test_clean_record(self):
        tx = Transaction(
            id="a", date=dt.date(2024, 1, 1), kind="expense", category="Food", amount=5,
        )
        assert record_problems(tx) == []
    
    def test_damaged_record(self):
        tx = Transaction(
            id="", date=dt.date(1800, 1, 1), kind="expense", category="", amount=0,
        )
        fields = {p.field for p in record_problems(tx)}
        assert fields == {"id", "date", "category", "amount"}
