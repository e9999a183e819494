"""
Summary Queries

DESIGN DECISION: Summaries are DETERMINISTIC folds over stored records.
They read through a record store and never cache, so a guest and an
account see the same arithmetic over their own data.

Only active debts count toward totals. Paid-off debts stay in the
ledger but no longer contribute to what is owed.
"""

from decimal import Decimal
from typing import Iterable

from pydantic import BaseModel, Field

from debt_mirror.models.entities import (
    Debt,
    DebtStatus,
    IncomeFrequency,
    IncomeSource,
)
from debt_mirror.services.storage import RecordStoreInterface


ZERO = Decimal("0")

# Multiplier that turns one payout into a monthly amount
MONTHLY_FACTORS: dict[IncomeFrequency, Decimal] = {
    IncomeFrequency.WEEKLY: Decimal("52") / Decimal("12"),
    IncomeFrequency.BIWEEKLY: Decimal("26") / Decimal("12"),
    IncomeFrequency.MONTHLY: Decimal("1"),
    IncomeFrequency.YEARLY: Decimal("1") / Decimal("12"),
}


class CurrencyTotals(BaseModel):
    """Totals of active debts in one currency."""

    total_balance: Decimal = ZERO
    total_minimum_payment: Decimal = ZERO
    debt_count: int = Field(default=0, ge=0)


class DebtSummary(BaseModel):
    """
    Headline numbers over active debts.

    total_balance mixes currencies; use totals_by_currency when the
    debts aren't all in one currency.
    """

    total_balance: Decimal = ZERO
    total_debts: int = Field(default=0, ge=0)
    average_interest_rate: Decimal = ZERO
    total_minimum_payment: Decimal = ZERO


def active_debts(debts: Iterable[Debt]) -> list[Debt]:
    return [d for d in debts if d.status == DebtStatus.ACTIVE]


def summarize_debts(debts: Iterable[Debt]) -> DebtSummary:
    """
    Sum balances and minimum payments of active debts.

    The average rate is taken over debts that have a rate at all.
    """
    active = active_debts(debts)
    rates = [d.interest_rate for d in active if d.interest_rate is not None]
    return DebtSummary(
        total_balance=sum((d.current_balance for d in active), ZERO),
        total_debts=len(active),
        average_interest_rate=sum(rates, ZERO) / len(rates) if rates else ZERO,
        total_minimum_payment=sum((d.minimum_payment or ZERO for d in active), ZERO),
    )


def totals_by_currency(debts: Iterable[Debt]) -> dict[str, CurrencyTotals]:
    """Group active debts by currency code."""
    totals: dict[str, CurrencyTotals] = {}
    for debt in active_debts(debts):
        bucket = totals.setdefault(debt.currency_code, CurrencyTotals())
        bucket.total_balance += debt.current_balance
        bucket.total_minimum_payment += debt.minimum_payment or ZERO
        bucket.debt_count += 1
    return totals


def monthly_amount(source: IncomeSource) -> Decimal:
    return source.amount * MONTHLY_FACTORS[source.frequency]


def total_monthly_income(sources: Iterable[IncomeSource]) -> Decimal:
    """Sum of every income source, normalized to a month."""
    return sum((monthly_amount(s) for s in sources), ZERO)


class SummaryQueries:
    """
    Summaries over whichever record store is active.

    GUARANTEES:
    - Only returns numbers derived from stored records
    - An empty store yields zero totals, never an error
    """

    def __init__(self, store: RecordStoreInterface):
        self._store = store

    async def debt_summary(self) -> DebtSummary:
        return summarize_debts(await self._store.list_debts())

    async def totals_by_currency(self) -> dict[str, CurrencyTotals]:
        return totals_by_currency(await self._store.list_debts())

    async def total_monthly_income(self) -> Decimal:
        return total_monthly_income(await self._store.list_income())
