"""Deterministic read-side reports over the local ledger."""

from finledger.queries.reports import (
    CategorySpending,
    DebtSummary,
    MonthlySavings,
    debt_summary,
    monthly_savings_progress,
    spending_by_category,
)

__all__ = [
    "CategorySpending",
    "DebtSummary",
    "MonthlySavings",
    "debt_summary",
    "monthly_savings_progress",
    "spending_by_category",
]
