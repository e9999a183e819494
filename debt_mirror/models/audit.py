"""
Audit Models for Debt Mirror

Every balance-affecting operation, every session transition and every
migration pass is recorded as an audit event. This provides:
1. Traceability of how a debt reached its balance
2. Debugging information when a migration only partly succeeds
3. Ability to reconstruct what happened to a guest's data

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Guest session lifecycle
    GUEST_SESSION_STARTED = "guest_session_started"
    GUEST_SESSION_EXPIRED = "guest_session_expired"
    GUEST_SESSION_ENDED = "guest_session_ended"

    # Records
    DEBT_CREATED = "debt_created"
    DEBT_UPDATED = "debt_updated"
    DEBT_DELETED = "debt_deleted"
    INCOME_CREATED = "income_created"
    INCOME_UPDATED = "income_updated"
    INCOME_DELETED = "income_deleted"

    # Ledger
    TRANSACTION_RECORDED = "transaction_recorded"
    TRANSACTION_DELETED = "transaction_deleted"
    BALANCE_REBUILT = "balance_rebuilt"

    # Migration
    MIGRATION_STARTED = "migration_started"
    MIGRATION_COMPLETED = "migration_completed"
    MIGRATION_FAILED = "migration_failed"
    ITEM_MIGRATION_FAILED = "item_migration_failed"

    # Identity
    SIGNED_IN = "signed_in"
    SIGNED_OUT = "signed_out"

    # System events
    STORAGE_ERROR = "storage_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    Entity ids are plain strings: guest records carry local ids and
    cloud records carry server-issued ids.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'debt', 'transaction', 'session')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Which storage the entity lives in
    mode: Optional[str] = Field(
        default=None,
        description="'guest' or 'authenticated'"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all events in one migration)"
    )

    # Event details
    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )

    # Additional data (event-specific)
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "mode": self.mode,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         mode, correlation_id, description, details_json, error_message]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            self.entity_id or "",
            self.mode or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.guest_session_started(session_id, expires_at)
        event = AuditEventBuilder.migration_completed(user_id, counts, correlation_id)
    """

    @staticmethod
    def guest_session_started(session_id: str, expires_at: datetime) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GUEST_SESSION_STARTED,
            entity_type="session",
            entity_id=session_id,
            mode="guest",
            description=f"Guest session started, expires {expires_at.isoformat()}",
            details={"expires_at": expires_at.isoformat()},
        )

    @staticmethod
    def guest_session_expired(session_id: str, expired_at: datetime) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GUEST_SESSION_EXPIRED,
            severity=AuditSeverity.WARNING,
            entity_type="session",
            entity_id=session_id,
            mode="guest",
            description="Guest session expired; guest data cleared",
            details={"expired_at": expired_at.isoformat()},
        )

    @staticmethod
    def guest_session_ended(session_id: Optional[str], reason: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GUEST_SESSION_ENDED,
            entity_type="session",
            entity_id=session_id,
            mode="guest",
            description=f"Guest session ended: {reason}",
            details={"reason": reason},
        )

    @staticmethod
    def record_changed(
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        mode: str,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        action = event_type.value.rsplit("_", 1)[-1]
        return AuditEvent(
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            mode=mode,
            description=f"{entity_type.capitalize()} {action}",
            details=details or {},
        )

    @staticmethod
    def transaction_recorded(
        transaction_id: str,
        debt_id: str,
        transaction_type: str,
        amount: str,
        new_balance: str,
        mode: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_RECORDED,
            entity_type="transaction",
            entity_id=transaction_id,
            mode=mode,
            description=f"{transaction_type.capitalize()} of {amount} recorded",
            details={
                "debt_id": debt_id,
                "type": transaction_type,
                "amount": amount,
                "new_balance": new_balance,
            },
        )

    @staticmethod
    def transaction_deleted(
        transaction_id: str,
        debt_id: str,
        new_balance: str,
        mode: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_DELETED,
            entity_type="transaction",
            entity_id=transaction_id,
            mode=mode,
            description="Transaction deleted and balance reverted",
            details={
                "debt_id": debt_id,
                "new_balance": new_balance,
            },
        )

    @staticmethod
    def balance_rebuilt(
        debt_id: str,
        previous_balance: str,
        new_balance: str,
        mode: str,
    ) -> AuditEvent:
        severity = (
            AuditSeverity.WARNING
            if previous_balance != new_balance
            else AuditSeverity.INFO
        )
        return AuditEvent(
            event_type=AuditEventType.BALANCE_REBUILT,
            severity=severity,
            entity_type="debt",
            entity_id=debt_id,
            mode=mode,
            description="Debt balance re-derived from its ledger",
            details={
                "previous_balance": previous_balance,
                "new_balance": new_balance,
            },
        )

    @staticmethod
    def migration_started(
        user_id: str,
        debts: int,
        income: int,
        transactions: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MIGRATION_STARTED,
            entity_type="user",
            entity_id=user_id,
            correlation_id=correlation_id,
            description=f"Migration started: {debts} debts, {income} income sources",
            details={
                "debts": debts,
                "income": income,
                "transactions": transactions,
            },
        )

    @staticmethod
    def migration_completed(
        user_id: str,
        counts: dict[str, int],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MIGRATION_COMPLETED,
            entity_type="user",
            entity_id=user_id,
            correlation_id=correlation_id,
            description=(
                f"Migration complete: {counts.get('debts', 0)} debts, "
                f"{counts.get('income', 0)} income, "
                f"{counts.get('transactions', 0)} transactions"
            ),
            details=counts,
        )

    @staticmethod
    def migration_failed(
        user_id: str,
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MIGRATION_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="user",
            entity_id=user_id,
            correlation_id=correlation_id,
            description="Migration failed; guest data left intact for retry",
            error_message=error_message,
        )

    @staticmethod
    def item_migration_failed(
        entity_type: str,
        local_id: str,
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ITEM_MIGRATION_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type=entity_type,
            entity_id=local_id,
            mode="guest",
            correlation_id=correlation_id,
            description=f"Could not migrate {entity_type} {local_id}",
            error_message=error_message,
        )

    @staticmethod
    def signed_in(user_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SIGNED_IN,
            entity_type="user",
            entity_id=user_id,
            mode="authenticated",
            description="Account signed in",
        )

    @staticmethod
    def signed_out(user_id: Optional[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SIGNED_OUT,
            entity_type="user",
            entity_id=user_id,
            description="Signed out",
        )

    @staticmethod
    def storage_error(
        operation: str,
        error_message: str,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORAGE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"Storage error during {operation}",
            error_message=error_message,
            details=details or {},
        )
