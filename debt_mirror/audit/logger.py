"""
Audit Logger

DESIGN DECISION: Every session transition, ledger write and migration
pass is logged. This provides:
1. Complete traceability of how a balance was reached
2. Debugging capability when a migration is only partly successful
3. Evidence of what happened to a guest's data after expiry

The audit logger:
- Is async, like the stores it sits beside
- Never lets a failed audit write break a ledger or migration call
- Groups the events of one migration pass under a correlation ID
"""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

import structlog

from debt_mirror.models.audit import AuditEvent, AuditEventBuilder, AuditEventType
from debt_mirror.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. An audit store (Google Sheets or in-memory), when configured
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("debt_mirror.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_session_started(self, session_id: str, expires_at: datetime) -> None:
        await self.log(AuditEventBuilder.guest_session_started(session_id, expires_at))

    async def log_session_expired(self, session_id: str, expired_at: datetime) -> None:
        await self.log(AuditEventBuilder.guest_session_expired(session_id, expired_at))

    async def log_session_ended(self, session_id: Optional[str], reason: str) -> None:
        await self.log(AuditEventBuilder.guest_session_ended(session_id, reason))

    async def log_record_changed(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        mode: str,
        details: Optional[dict] = None,
    ) -> None:
        """Log a create, update or delete of a debt or income source."""
        event = AuditEventBuilder.record_changed(
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            mode=mode,
            details=details,
        )
        await self.log(event)

    async def log_transaction_recorded(
        self,
        transaction_id: str,
        debt_id: str,
        transaction_type: str,
        amount: str,
        new_balance: str,
        mode: str,
    ) -> None:
        event = AuditEventBuilder.transaction_recorded(
            transaction_id=transaction_id,
            debt_id=debt_id,
            transaction_type=transaction_type,
            amount=amount,
            new_balance=new_balance,
            mode=mode,
        )
        await self.log(event)

    async def log_transaction_deleted(
        self,
        transaction_id: str,
        debt_id: str,
        new_balance: str,
        mode: str,
    ) -> None:
        event = AuditEventBuilder.transaction_deleted(
            transaction_id=transaction_id,
            debt_id=debt_id,
            new_balance=new_balance,
            mode=mode,
        )
        await self.log(event)

    async def log_balance_rebuilt(
        self,
        debt_id: str,
        previous_balance: str,
        new_balance: str,
        mode: str,
    ) -> None:
        event = AuditEventBuilder.balance_rebuilt(
            debt_id=debt_id,
            previous_balance=previous_balance,
            new_balance=new_balance,
            mode=mode,
        )
        await self.log(event)

    async def log_migration_started(
        self,
        user_id: str,
        debts: int,
        income: int,
        transactions: int,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.migration_started(
            user_id=user_id,
            debts=debts,
            income=income,
            transactions=transactions,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_migration_completed(
        self,
        user_id: str,
        counts: dict[str, int],
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.migration_completed(
            user_id=user_id,
            counts=counts,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_migration_failed(
        self,
        user_id: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.migration_failed(
            user_id=user_id,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_item_migration_failed(
        self,
        entity_type: str,
        local_id: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.item_migration_failed(
            entity_type=entity_type,
            local_id=local_id,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_signed_in(self, user_id: str) -> None:
        await self.log(AuditEventBuilder.signed_in(user_id))

    async def log_signed_out(self, user_id: Optional[str]) -> None:
        await self.log(AuditEventBuilder.signed_out(user_id))

    async def log_storage_error(
        self,
        operation: str,
        error_message: str,
        details: Optional[dict] = None,
    ) -> None:
        event = AuditEventBuilder.storage_error(
            operation=operation,
            error_message=error_message,
            details=details,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a multi-step action (e.g., a migration pass).
    Pass it through all subsequent operations.
    """
    return uuid4()
