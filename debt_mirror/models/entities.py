"""
Core Data Models for Debt Mirror

These models define the strict schemas for every record the data layer
stores, whether it lives in the guest key-value namespace or in the
cloud tables. They are designed to:
1. Enforce type safety at runtime
2. Round-trip through JSON without loss (Decimal amounts, ISO timestamps)
3. Look identical in both backends except for identifier origin

DESIGN DECISION: Money is Decimal, never float.
Interest is computed from a percentage and a month divisor, and float
arithmetic would drift the ledger away from its own replay.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class TransactionType(str, Enum):
    """
    Kinds of ledger entries.

    INITIAL is only ever written once per debt, when the debt is opened.
    """
    INITIAL = "initial"
    BORROW = "borrow"
    PAYMENT = "payment"


class DebtType(str, Enum):
    """Supported debt categories."""
    CREDIT_CARD = "credit_card"
    LOAN = "loan"
    STUDENT_LOAN = "student_loan"
    MORTGAGE = "mortgage"
    AUTO_LOAN = "auto_loan"
    MEDICAL = "medical"
    OTHER = "other"


class DebtStatus(str, Enum):
    """Lifecycle status of a debt."""
    ACTIVE = "active"
    PAID_OFF = "paid_off"


class IncomeFrequency(str, Enum):
    """How often an income source pays out."""
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


# =============================================================================
# GUEST SESSION
# =============================================================================

class GuestSession(BaseModel):
    """
    The time-boxed record authorizing guest-mode data access.

    Validity is NEVER stored on the model. Callers derive it from
    expires_at against the current clock on every read.
    """

    id: str = Field(
        ...,
        min_length=1,
        description="Local identifier of the session"
    )
    started_at: datetime = Field(
        ...,
        description="When guest mode was entered"
    )
    expires_at: datetime = Field(
        ...,
        description="After this instant the session and its data are void"
    )

    @model_validator(mode='after')
    def validate_window(self) -> 'GuestSession':
        if self.expires_at < self.started_at:
            raise ValueError("Session cannot expire before it starts")
        return self


class PartialUpdate(BaseModel):
    """
    Base for partial updates.

    Only fields the caller explicitly set are changes. A None on a field
    the stored record requires means "leave it as it is", never "clear it".
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    REQUIRED_FIELDS: ClassVar[frozenset[str]] = frozenset()

    def changes(self, mode: str = "python") -> dict[str, Any]:
        """The explicitly set fields, minus Nones on required fields."""
        return {
            name: value
            for name, value in self.model_dump(mode=mode, exclude_unset=True).items()
            if value is not None or name not in self.REQUIRED_FIELDS
        }


# =============================================================================
# DEBTS
# =============================================================================

class Debt(BaseModel):
    """
    A debt owned by exactly one identity (guest session or account).

    CRITICAL: current_balance is derived from the ledger. Only the
    ledger service writes it after the debt has been opened.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(
        ...,
        min_length=1,
        description="Local or cloud identifier"
    )
    name: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Display name of the debt"
    )
    description: Optional[str] = Field(
        default=None,
        max_length=1000
    )
    debt_type: DebtType = DebtType.OTHER
    creditor_name: Optional[str] = Field(
        default=None,
        max_length=200
    )
    currency_code: str = Field(
        default="USD",
        min_length=3,
        max_length=3
    )
    principal: Decimal = Field(
        ...,
        ge=0,
        description="Amount originally owed"
    )
    current_balance: Decimal = Field(
        ...,
        ge=0,
        description="Balance after every ledger entry so far"
    )
    interest_rate: Optional[Decimal] = Field(
        default=None,
        ge=0,
        description="Annual percentage rate, e.g. 12 for 12%"
    )
    minimum_payment: Optional[Decimal] = Field(
        default=None,
        ge=0
    )
    start_date: Optional[date] = None
    due_date: Optional[date] = None
    target_payoff_date: Optional[date] = None
    status: DebtStatus = DebtStatus.ACTIVE
    priority: int = Field(
        default=0,
        ge=0
    )
    created_at: datetime
    updated_at: datetime


class DebtCreate(BaseModel):
    """
    Fields a caller supplies to open a debt.

    current_balance defaults to principal. Whatever it resolves to is
    the amount of the debt's initial ledger entry.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    debt_type: DebtType = DebtType.OTHER
    creditor_name: Optional[str] = Field(default=None, max_length=200)
    currency_code: str = Field(default="USD", min_length=3, max_length=3)
    principal: Decimal = Field(..., ge=0)
    current_balance: Optional[Decimal] = Field(default=None, ge=0)
    interest_rate: Optional[Decimal] = Field(default=None, ge=0)
    minimum_payment: Optional[Decimal] = Field(default=None, ge=0)
    start_date: Optional[date] = None
    due_date: Optional[date] = None
    target_payoff_date: Optional[date] = None
    status: DebtStatus = DebtStatus.ACTIVE
    priority: int = Field(default=0, ge=0)

    @model_validator(mode='after')
    def default_balance_to_principal(self) -> 'DebtCreate':
        if self.current_balance is None:
            self.current_balance = self.principal
        return self

    @property
    def starting_balance(self) -> Decimal:
        return self.current_balance if self.current_balance is not None else self.principal


class DebtUpdate(PartialUpdate):
    """
    Partial update of a debt.

    principal and current_balance move the balance, so through the mode
    controller they are applied by LedgerService.revise_debt as ledger
    entries. Record stores merge them verbatim; only the ledger service
    hands them a balance.
    """
    REQUIRED_FIELDS: ClassVar[frozenset[str]] = frozenset({
        "name", "debt_type", "currency_code", "principal",
        "current_balance", "status", "priority",
    })

    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    debt_type: Optional[DebtType] = None
    creditor_name: Optional[str] = Field(default=None, max_length=200)
    currency_code: Optional[str] = Field(default=None, min_length=3, max_length=3)
    principal: Optional[Decimal] = Field(default=None, ge=0)
    current_balance: Optional[Decimal] = Field(default=None, ge=0)
    interest_rate: Optional[Decimal] = Field(default=None, ge=0)
    minimum_payment: Optional[Decimal] = Field(default=None, ge=0)
    start_date: Optional[date] = None
    due_date: Optional[date] = None
    target_payoff_date: Optional[date] = None
    status: Optional[DebtStatus] = None
    priority: Optional[int] = Field(default=None, ge=0)


# =============================================================================
# INCOME
# =============================================================================

class IncomeSource(BaseModel):
    """An income source. No cross-entity invariants beyond a unique id."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(..., min_length=1)
    source_name: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Profession or employer"
    )
    amount: Decimal = Field(..., ge=0)
    currency_code: str = Field(default="USD", min_length=3, max_length=3)
    frequency: IncomeFrequency = IncomeFrequency.MONTHLY
    is_primary: bool = False
    created_at: datetime
    updated_at: datetime


class IncomeCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    source_name: str = Field(..., min_length=1, max_length=200)
    amount: Decimal = Field(..., ge=0)
    currency_code: str = Field(default="USD", min_length=3, max_length=3)
    frequency: IncomeFrequency = IncomeFrequency.MONTHLY
    is_primary: bool = False


class IncomeUpdate(PartialUpdate):
    REQUIRED_FIELDS: ClassVar[frozenset[str]] = frozenset({
        "source_name", "amount", "currency_code", "frequency", "is_primary",
    })

    source_name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    amount: Optional[Decimal] = Field(default=None, ge=0)
    currency_code: Optional[str] = Field(default=None, min_length=3, max_length=3)
    frequency: Optional[IncomeFrequency] = None
    is_primary: Optional[bool] = None


# =============================================================================
# TRANSACTIONS
# =============================================================================

class Transaction(BaseModel):
    """
    A single ledger entry against one debt.

    Immutable once created. Deleting it must reverse its effect on the
    parent debt's balance.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(..., min_length=1)
    debt_id: str = Field(..., min_length=1)
    type: TransactionType
    amount: Decimal = Field(..., ge=0)
    interest_amount: Decimal = Field(default=Decimal("0"), ge=0)
    new_balance: Optional[Decimal] = Field(default=None, ge=0)
    notes: Optional[str] = Field(default=None, max_length=500)
    created_at: datetime


class TransactionCreate(BaseModel):
    """
    A transaction intent.

    interest_amount is optional. When omitted on a borrow, the ledger
    computes one month of simple interest from the debt's rate.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    debt_id: str = Field(..., min_length=1)
    type: TransactionType
    amount: Decimal = Field(..., ge=0)
    interest_amount: Optional[Decimal] = Field(default=None, ge=0)
    notes: Optional[str] = Field(default=None, max_length=500)


class TransactionDraft(BaseModel):
    """A fully computed ledger entry, ready to be written by a record store."""

    debt_id: str = Field(..., min_length=1)
    type: TransactionType
    amount: Decimal = Field(..., ge=0)
    interest_amount: Decimal = Field(default=Decimal("0"), ge=0)
    new_balance: Optional[Decimal] = Field(default=None, ge=0)
    notes: Optional[str] = Field(default=None, max_length=500)


class GuestData(BaseModel):
    """Snapshot of every guest collection, taken at the start of a migration."""

    debts: list[Debt] = Field(default_factory=list)
    income: list[IncomeSource] = Field(default_factory=list)
    transactions: list[Transaction] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.debts and not self.income
