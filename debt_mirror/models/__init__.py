"""
Data Models Package

This package contains all Pydantic models used by the Debt Mirror data layer.
Every record in either backend must conform to these schemas.
"""

from debt_mirror.models.entities import (
    Debt,
    DebtCreate,
    DebtStatus,
    DebtType,
    DebtUpdate,
    GuestData,
    GuestSession,
    IncomeCreate,
    IncomeFrequency,
    IncomeSource,
    IncomeUpdate,
    Transaction,
    TransactionCreate,
    TransactionDraft,
    TransactionType,
)
from debt_mirror.models.mode import AccessMode, Mode
from debt_mirror.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Entity models
    "Debt",
    "DebtCreate",
    "DebtStatus",
    "DebtType",
    "DebtUpdate",
    "GuestData",
    "GuestSession",
    "IncomeCreate",
    "IncomeFrequency",
    "IncomeSource",
    "IncomeUpdate",
    "Transaction",
    "TransactionCreate",
    "TransactionDraft",
    "TransactionType",
    # Mode
    "AccessMode",
    "Mode",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
