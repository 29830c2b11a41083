"""Tests for the pure aggregation functions."""

import datetime as dt

import pytest

from household_ledger.models import FilterState, Transaction
from household_ledger.queries import (
    build_monthly_aggregate,
    compute_summary,
    filter_transactions,
    full_span_window,
    month_window,
    shift_month,
)


def tx(tx_id, date, kind, amount, category=None):
    category = category or ("Salary" if kind == "income" else "Food")
    return Transaction(
        id=tx_id,
        date=dt.date.fromisoformat(date),
        kind=kind,
        category=category,
        amount=amount,
    )


class TestSummary:
    """Tests for compute_summary."""
    
    def test_empty(self):
        summary = compute_summary([])
        assert summary.balance == 0
        assert summary.avg_income == 0.0
        assert summary.transaction_count == 0
    
    def test_totals_counts_and_averages(self):
        summary = compute_summary([
            tx("1", "2024-01-10", "income", 300000),
            tx("2", "2024-01-25", "income", 100000),
            tx("3", "2024-01-12", "expense", 5000),
        ])
        assert summary.income == 400000
        assert summary.expense == 5000
        assert summary.balance == 395000
        assert summary.income_count == 2
        assert summary.expense_count == 1
        assert summary.transaction_count == 3
        assert summary.avg_income == 200000.0
        assert summary.avg_expense == 5000.0


class TestFilter:
    """Tests for filter_transactions."""
    
    def test_sorted_newest_first(self):
        transactions = [
            tx("1", "2024-01-10", "expense", 1),
            tx("2", "2024-03-01", "expense", 1),
            tx("3", "2024-02-01", "income", 1),
        ]
        assert [t.id for t in filter_transactions(transactions, FilterState())] == ["2", "3", "1"]
    
    def test_conjunctive(self):
        transactions = [
            tx("1", "2024-01-10", "expense", 1, "Food"),
            tx("2", "2024-01-11", "expense", 1, "Transport"),
            tx("3", "2024-02-10", "expense", 1, "Food"),
        ]
        filters = FilterState(kind="expense", category="Food", month="2024-01")
        assert [t.id for t in filter_transactions(transactions, filters)] == ["1"]


class TestMonthWindows:
    """Tests for month arithmetic."""
    
    def test_shift_month_across_years(self):
        assert shift_month(2024, 1, -1) == (2023, 12)
        assert shift_month(2023, 12, 1) == (2024, 1)
        assert shift_month(2024, 3, -14) == (2023, 1)
    
    def test_month_window_oldest_first(self):
        assert month_window(3, dt.date(2024, 2, 10)) == ["2023-12", "2024-01", "2024-02"]
    
    def test_month_window_rejects_zero(self):
        with pytest.raises(ValueError):
            month_window(0, dt.date(2024, 1, 1))
    
    def test_full_span(self):
        transactions = [
            tx("1", "2023-11-30", "expense", 1),
            tx("2", "2024-02-01", "expense", 1),
        ]
        assert full_span_window(transactions) == ["2023-11", "2023-12", "2024-01", "2024-02"]
        assert full_span_window([]) == []


class TestMonthlyAggregate:
    """Tests for build_monthly_aggregate."""
    
    def test_every_month_present_and_zero_filled(self):
        transactions = [
            tx("1", "2024-01-10", "income", 300000),
            tx("2", "2024-01-12", "expense", 5000),
            tx("3", "2024-03-05", "expense", 2000),
            tx("4", "2023-06-01", "expense", 9999),
        ]
        monthly = build_monthly_aggregate(transactions, 3, dt.date(2024, 3, 31))
        
        assert list(monthly) == ["2024-01", "2024-02", "2024-03"]
        assert monthly["2024-01"].income == 300000
        assert monthly["2024-01"].expense == 5000
        assert monthly["2024-02"].income == 0
        assert monthly["2024-02"].expense == 0
        assert monthly["2024-03"].expense == 2000
    
    def test_full_span_when_count_is_none(self):
        transactions = [
            tx("1", "2023-12-10", "income", 10),
            tx("2", "2024-02-10", "expense", 5),
        ]
        monthly = build_monthly_aggregate(transactions, None, dt.date(2030, 1, 1))
        assert list(monthly) == ["2023-12", "2024-01", "2024-02"]
        assert monthly["2024-02"].balance == -5
