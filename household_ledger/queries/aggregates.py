"""
Aggregation Functions

DESIGN DECISION: Aggregation is DETERMINISTIC and side-effect free.
These functions only read the transactions they are handed; caching
and invalidation are the ledger's job. Recomputation is O(n), which
is fine at household scale.
"""

import datetime as dt
from typing import Iterable, Optional

from household_ledger.models.ledger import MonthlyTotals, Summary
from household_ledger.models.transaction import FilterState, Transaction, TransactionKind


def filter_transactions(
    transactions: Iterable[Transaction],
    filters: FilterState,
) -> list[Transaction]:
    """Transactions matching every set filter, newest date first."""
    matching = [t for t in transactions if filters.matches(t)]
    matching.sort(key=lambda t: t.date, reverse=True)
    return matching


def compute_summary(transactions: Iterable[Transaction]) -> Summary:
    """Totals, counts and averages per kind, plus the balance."""
    income = expense = 0
    income_count = expense_count = 0
    
    for transaction in transactions:
        if transaction.kind == TransactionKind.INCOME:
            income += transaction.amount
            income_count += 1
        else:
            expense += transaction.amount
            expense_count += 1
    
    return Summary(
        income=income,
        expense=expense,
        balance=income - expense,
        transaction_count=income_count + expense_count,
        income_count=income_count,
        expense_count=expense_count,
        avg_income=income / income_count if income_count else 0.0,
        avg_expense=expense / expense_count if expense_count else 0.0,
    )


def month_key(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


def shift_month(year: int, month: int, offset: int) -> tuple[int, int]:
    """Move (year, month) by `offset` months (negative goes back)."""
    index = year * 12 + (month - 1) + offset
    return index // 12, index % 12 + 1


def month_window(month_count: int, end_date: dt.date) -> list[str]:
    """
    The `month_count` calendar months ending with end_date's month.
    
    Returned oldest first, as YYYY-MM keys.
    """
    if month_count < 1:
        raise ValueError("month_count must be at least 1")
    
    return [
        month_key(*shift_month(end_date.year, end_date.month, -offset))
        for offset in range(month_count - 1, -1, -1)
    ]


def full_span_window(transactions: Iterable[Transaction]) -> list[str]:
    """Every month from the oldest to the newest transaction."""
    dates = [t.date for t in transactions]
    if not dates:
        return []
    
    first, last = min(dates), max(dates)
    count = (last.year - first.year) * 12 + (last.month - first.month) + 1
    return month_window(count, last)


def build_monthly_aggregate(
    transactions: list[Transaction],
    month_count: Optional[int],
    end_date: dt.date,
) -> dict[str, MonthlyTotals]:
    """
    Per-month income/expense totals over a window of months.
    
    Every month in the window is present (zero if it has no entries).
    `month_count=None` covers the whole span of the collection.
    """
    if month_count is None:
        keys = full_span_window(transactions)
    else:
        keys = month_window(month_count, end_date)
    
    monthly = {key: MonthlyTotals() for key in keys}
    
    for transaction in transactions:
        totals = monthly.get(transaction.month)
        if totals is None:
            continue
        if transaction.kind == TransactionKind.INCOME:
            totals.income += transaction.amount
        else:
            totals.expense += transaction.amount
    
    return monthly
