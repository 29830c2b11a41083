"""
Tests for Household Ledger models

Test strategy:
1. Models only check types; range rules live in the sanitizer
2. Serialized forms must be JSON-compatible for both backends
3. Derived helpers (month, filters, registry) behave as documented
"""

import datetime as dt

import pytest
from pydantic import ValidationError as ModelValidationError

from household_ledger.models import (
    DEFAULT_CATEGORIES,
    SNAPSHOT_VERSION,
    AuditEvent,
    AuditSeverity,
    BackupRecord,
    CategoryRegistry,
    FieldError,
    FilterState,
    IntegrityIssue,
    IntegrityReport,
    MonthlyTotals,
    RepairReport,
    RowError,
    SettingsRecord,
    Snapshot,
    Transaction,
    TransactionKind,
)


def make_transaction(**overrides):
    data = {
        "id": "abc123",
        "date": dt.date(2024, 3, 15),
        "kind": TransactionKind.EXPENSE,
        "category": "Food",
        "amount": 1200,
    }
    data.update(overrides)
    return Transaction(**data)


class TestTransactionModel:
    """Tests for the Transaction model."""
    
    def test_transaction_creation(self):
        """Test Transaction creation with defaults."""
        tx = make_transaction()
        assert tx.note == ""
        assert tx.created_at.tzinfo is not None
        assert tx.month == "2024-03"
    
    def test_transaction_record_is_json_compatible(self):
        """Test that to_record() produces plain JSON types."""
        record = make_transaction().to_record()
        assert record["date"] == "2024-03-15"
        assert record["kind"] == "expense"
        assert isinstance(record["created_at"], str)
    
    def test_transaction_parses_stored_record(self):
        """Test that a stored record parses back to an equal model."""
        tx = make_transaction(note="lunch")
        assert Transaction.model_validate(tx.to_record()) == tx
    
    def test_transaction_rejects_unknown_kind(self):
        """Test that kinds other than income/expense are rejected."""
        with pytest.raises(ModelValidationError):
            make_transaction(kind="transfer")
    
    def test_transaction_keeps_out_of_range_amount(self):
        """Test that the model stays lenient so damaged records can be repaired."""
        assert make_transaction(amount=-5).amount == -5


class TestCategoryRegistry:
    """Tests for CategoryRegistry."""
    
    def test_defaults(self):
        registry = CategoryRegistry()
        assert registry.income == list(DEFAULT_CATEGORIES[TransactionKind.INCOME])
        assert "Food" in registry.expense
    
    def test_duplicates_are_dropped_in_order(self):
        registry = CategoryRegistry(income=["A", "B", "A"], expense=[])
        assert registry.income == ["A", "B"]
    
    def test_names_is_live(self):
        registry = CategoryRegistry()
        registry.names(TransactionKind.EXPENSE).append("Pets")
        assert registry.contains(TransactionKind.EXPENSE, "Pets")
        assert not registry.contains(TransactionKind.INCOME, "Pets")
    
    def test_serialized_shape(self):
        data = CategoryRegistry().model_dump()
        assert set(data) == {"income", "expense"}


class TestFilterState:
    """Tests for FilterState."""
    
    def test_empty_values_mean_no_constraint(self):
        filters = FilterState(kind="", category="  ", month="")
        assert filters.kind is None
        assert filters.category is None
        assert filters.month is None
    
    def test_month_pattern(self):
        with pytest.raises(ModelValidationError):
            FilterState(month="2024-13")
    
    def test_merged_returns_new_state(self):
        base = FilterState(kind="expense")
        merged = base.merged({"month": "2024-03"})
        assert merged.kind == TransactionKind.EXPENSE
        assert merged.month == "2024-03"
        assert base.month is None
    
    def test_matches_is_conjunctive(self):
        tx = make_transaction()
        assert FilterState().matches(tx)
        assert FilterState(kind="expense", month="2024-03").matches(tx)
        assert not FilterState(kind="expense", category="Transport").matches(tx)
        assert not FilterState(month="2024-04").matches(tx)


class TestLedgerModels:
    """Tests for result and persisted-state models."""
    
    def test_field_error_str(self):
        assert str(FieldError(field="amount", message="too big")) == "amount: too big"
    
    def test_row_error_rows_are_one_based(self):
        with pytest.raises(ModelValidationError):
            RowError(row=0, errors=[])
    
    def test_monthly_totals_balance(self):
        assert MonthlyTotals(income=500, expense=200).balance == 300
    
    def test_settings_record_rejects_negative_counter(self):
        with pytest.raises(ModelValidationError):
            SettingsRecord(id_counter=-1)
    
    def test_snapshot_defaults(self):
        snapshot = Snapshot()
        assert snapshot.version == SNAPSHOT_VERSION == "2.0.0"
        assert snapshot.transactions == []
    
    def test_snapshot_json_round_trip(self):
        snapshot = Snapshot(transactions=[make_transaction()], id_counter=1)
        restored = Snapshot.model_validate_json(snapshot.model_dump_json())
        assert restored == snapshot
    
    def test_backup_record_wraps_snapshot(self):
        record = BackupRecord(payload=Snapshot())
        assert record.id is None
        assert record.version == SNAPSHOT_VERSION
    
    def test_integrity_report_validity(self):
        assert IntegrityReport().is_valid
        report = IntegrityReport(issues=[
            IntegrityIssue(issue_type="duplicate_id", transaction_id="x", message="dup"),
        ])
        assert not report.is_valid
    
    def test_integrity_issue_type_is_restricted(self):
        with pytest.raises(ModelValidationError):
            IntegrityIssue(issue_type="other", message="?")
    
    def test_repair_report_counts_actions(self):
        assert RepairReport(actions=["a", "b"]).repairs_count == 2


class TestAuditModels:
    """Tests for audit-related models."""
    
    def test_audit_event_to_log_dict(self):
        """Test conversion to log dictionary."""
        event = AuditEvent(
            topic="transactionAdded",
            severity=AuditSeverity.INFO,
            entity_id="abc",
            description="added",
            details={"amount": 100},
        )
        log_dict = event.to_log_dict()
        assert log_dict["topic"] == "transactionAdded"
        assert log_dict["severity"] == "info"
        assert log_dict["details"] == {"amount": 100}
        assert len(log_dict["event_id"]) == 32
    
    def test_audit_event_description_limit(self):
        with pytest.raises(ModelValidationError):
            AuditEvent(topic="x", description="d" * 501)
