"""
Migration Coordinator

Moves everything a guest created into the account that just signed in,
then clears the guest namespace.

Flow:
1. Snapshot guest debts, income and transactions
2. Nothing to move -> clear the namespace, report success
3. Insert debts, remembering old id -> new id
4. Insert income sources
5. Insert transactions whose debt made it across, with debt_id rewritten
6. Clear the namespace only if no unexpected error escaped steps 1-5

DESIGN DECISION: Per-item, best-effort batch. One failed insert is
logged, audited and left out of the counts; it doesn't stop the rest.

TRADEOFFS: The cloud store has no transactions, so a pass can leave
some debts migrated and others not. Because the namespace is cleared
only when the pass as a whole succeeds, a failed item whose pass
succeeded is gone from the device. We report counts so the caller can
tell, but we do not try to reconcile.
"""

import asyncio
from typing import Any, Optional
from uuid import UUID

import structlog
from pydantic import BaseModel, Field

from debt_mirror.audit import AuditLogger, create_correlation_id
from debt_mirror.services.clock import Clock, utc_now
from debt_mirror.services.cloud_store import (
    DEBTS_TABLE,
    INCOME_TABLE,
    TRANSACTIONS_TABLE,
)
from debt_mirror.services.local_store import LocalRecordStore
from debt_mirror.services.storage.interface import RemoteTableInterface, StorageError


logger = structlog.get_logger(__name__)


class MigrationResult(BaseModel):
    """Outcome of one migration pass."""

    success: bool
    migrated_debts: int = Field(default=0, ge=0)
    migrated_income: int = Field(default=0, ge=0)
    migrated_transactions: int = Field(default=0, ge=0)
    skipped_transactions: int = Field(
        default=0,
        ge=0,
        description="Transactions left behind because their debt didn't migrate"
    )
    error: Optional[str] = None

    @property
    def counts(self) -> dict[str, int]:
        return {
            "debts": self.migrated_debts,
            "income": self.migrated_income,
            "transactions": self.migrated_transactions,
            "skipped_transactions": self.skipped_transactions,
        }


class MigrationCoordinator:
    """
    Copies guest records into the cloud tables for one user.

    Usage:
        coordinator = MigrationCoordinator(local_store, remote)
        result = await coordinator.migrate(user_id)
    """

    def __init__(
        self,
        local_store: LocalRecordStore,
        remote: RemoteTableInterface,
        audit_logger: Optional[AuditLogger] = None,
        clock: Clock = utc_now,
    ):
        self._local = local_store
        self._remote = remote
        self._audit_logger = audit_logger
        self._clock = clock
        self._lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    async def has_data_to_migrate(self) -> bool:
        """True when a guest session exists and holds a debt or income source."""
        if await self._local.read_session() is None:
            return False
        try:
            return await self._local.has_data()
        except StorageError as e:
            logger.error("migration_check_failed", error=str(e))
            return False

    async def migrate(self, user_id: str) -> MigrationResult:
        """
        Run one migration pass for user_id.

        Passes never overlap: a second caller waits for the first and
        then sees whatever the first left behind.
        """
        async with self._lock:
            return await self._migrate(user_id)

    async def _migrate(self, user_id: str) -> MigrationResult:
        correlation_id = create_correlation_id()
        log = logger.bind(user_id=user_id, correlation_id=str(correlation_id))

        try:
            data = await self._local.get_all_data()

            if data.is_empty:
                await self._local.clear_all()
                log.info("migration_nothing_to_migrate")
                return MigrationResult(success=True)

            log.info(
                "migration_started",
                debts=len(data.debts),
                income=len(data.income),
                transactions=len(data.transactions),
            )
            if self._audit_logger:
                await self._audit_logger.log_migration_started(
                    user_id=user_id,
                    debts=len(data.debts),
                    income=len(data.income),
                    transactions=len(data.transactions),
                    correlation_id=correlation_id,
                )

            now = self._clock().isoformat()
            result = MigrationResult(success=True)

            # old local id -> new cloud id, only for this pass
            debt_ids: dict[str, str] = {}
            for debt in data.debts:
                row = debt.model_dump(mode="json", exclude={"id"})
                stored = await self._insert_item(
                    DEBTS_TABLE, "debt", debt.id, row, user_id, now, correlation_id
                )
                if stored is not None:
                    debt_ids[debt.id] = stored["id"]
                    result.migrated_debts += 1

            for income in data.income:
                row = income.model_dump(mode="json", exclude={"id"})
                stored = await self._insert_item(
                    INCOME_TABLE, "income", income.id, row, user_id, now, correlation_id
                )
                if stored is not None:
                    result.migrated_income += 1

            for transaction in data.transactions:
                new_debt_id = debt_ids.get(transaction.debt_id)
                if new_debt_id is None:
                    result.skipped_transactions += 1
                    log.warning(
                        "migration_orphan_transaction_skipped",
                        transaction_id=transaction.id,
                        debt_id=transaction.debt_id,
                    )
                    continue
                row = transaction.model_dump(mode="json", exclude={"id"})
                row["debt_id"] = new_debt_id
                stored = await self._insert_item(
                    TRANSACTIONS_TABLE,
                    "transaction",
                    transaction.id,
                    row,
                    user_id,
                    None,
                    correlation_id,
                )
                if stored is not None:
                    result.migrated_transactions += 1

            await self._local.clear_all()

        except Exception as e:
            log.error("migration_failed", error=str(e), exc_info=True)
            if self._audit_logger:
                await self._audit_logger.log_migration_failed(
                    user_id=user_id,
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
            return MigrationResult(success=False, error=str(e))

        log.info("migration_completed", **result.counts)
        if self._audit_logger:
            await self._audit_logger.log_migration_completed(
                user_id=user_id,
                counts=result.counts,
                correlation_id=correlation_id,
            )
        return result

    async def _insert_item(
        self,
        table: str,
        entity_type: str,
        local_id: str,
        row: dict[str, Any],
        user_id: str,
        updated_at: Optional[str],
        correlation_id: UUID,
    ) -> Optional[dict[str, Any]]:
        """
        Insert one row; on any failure log, audit and return None.

        Remote backends are not required to wrap every error in
        RemoteError, and one bad item must not abort the pass.
        """
        row = {**row, "user_id": user_id}
        if updated_at is not None:
            row["updated_at"] = updated_at
        try:
            return await self._remote.insert(table, row)
        except Exception as e:
            logger.warning(
                "migration_item_failed",
                entity_type=entity_type,
                local_id=local_id,
                error=str(e),
            )
            if self._audit_logger:
                await self._audit_logger.log_item_migration_failed(
                    entity_type=entity_type,
                    local_id=local_id,
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
            return None
