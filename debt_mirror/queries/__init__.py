"""Summary queries package."""

from debt_mirror.queries.summary import (
    CurrencyTotals,
    DebtSummary,
    SummaryQueries,
    summarize_debts,
    total_monthly_income,
    totals_by_currency,
)

__all__ = [
    "CurrencyTotals",
    "DebtSummary",
    "SummaryQueries",
    "summarize_debts",
    "total_monthly_income",
    "totals_by_currency",
]
