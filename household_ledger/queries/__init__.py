"""Aggregation and filtering package."""

from household_ledger.queries.aggregates import (
    build_monthly_aggregate,
    compute_summary,
    filter_transactions,
    full_span_window,
    month_window,
    shift_month,
)

__all__ = [
    "build_monthly_aggregate",
    "compute_summary",
    "filter_transactions",
    "full_span_window",
    "month_window",
    "shift_month",
]
