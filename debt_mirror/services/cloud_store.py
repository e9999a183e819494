"""
Cloud Record Store

Authenticated-mode repository of debts, income sources and transactions,
scoped to one user id, on top of the remote table operations.

Rows carry user_id; models don't. Every read filters on user_id and
every write by id first checks the row belongs to this user.
"""

from typing import Any, Optional, Type, TypeVar

import structlog
from pydantic import BaseModel, ValidationError

from debt_mirror.models.entities import (
    Debt,
    DebtCreate,
    DebtUpdate,
    IncomeCreate,
    IncomeSource,
    IncomeUpdate,
    Transaction,
    TransactionDraft,
)
from debt_mirror.services.clock import Clock, utc_now
from debt_mirror.services.storage.interface import (
    NotFoundError,
    RecordStoreInterface,
    RemoteError,
    RemoteTableInterface,
)


DEBTS_TABLE = "debts"
INCOME_TABLE = "income"
TRANSACTIONS_TABLE = "debt_transactions"

logger = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class CloudRecordStore(RecordStoreInterface):
    """Records of one account in the cloud tables."""

    def __init__(
        self,
        remote: RemoteTableInterface,
        user_id: str,
        clock: Clock = utc_now,
    ):
        if not user_id:
            raise ValueError("CloudRecordStore requires a user id")
        self._remote = remote
        self._user_id = user_id
        self._clock = clock

    @property
    def user_id(self) -> str:
        return self._user_id

    def _to_model(self, model: Type[ModelT], row: dict[str, Any]) -> ModelT:
        try:
            return model.model_validate(row)
        except ValidationError as e:
            raise RemoteError(f"Malformed {model.__name__} row {row.get('id')}: {e}")

    async def _select(
        self,
        table: str,
        model: Type[ModelT],
        **filters: Any,
    ) -> list[ModelT]:
        rows = await self._remote.select(table, {"user_id": self._user_id, **filters})
        records = []
        for row in rows:
            try:
                records.append(model.model_validate(row))
            except ValidationError as e:
                logger.warning(
                    "cloud_row_malformed",
                    table=table,
                    row_id=row.get("id"),
                    error=str(e),
                )
        return records

    async def _get(self, table: str, model: Type[ModelT], record_id: str) -> Optional[ModelT]:
        records = await self._select(table, model, id=record_id)
        return records[0] if records else None

    async def _insert(self, table: str, model: Type[ModelT], row: dict[str, Any]) -> ModelT:
        stored = await self._remote.insert(table, {**row, "user_id": self._user_id})
        return self._to_model(model, stored)

    async def _update(
        self,
        table: str,
        model: Type[ModelT],
        record_id: str,
        patch: dict[str, Any],
    ) -> ModelT:
        if await self._get(table, model, record_id) is None:
            raise NotFoundError(f"{model.__name__} not found: {record_id}")
        patch = {**patch, "updated_at": self._clock().isoformat()}
        stored = await self._remote.update(table, record_id, patch)
        return self._to_model(model, stored)

    async def _delete(self, table: str, model: Type[ModelT], record_id: str) -> bool:
        if await self._get(table, model, record_id) is None:
            return False
        return await self._remote.delete(table, record_id)

    # -------------------------------------------------------------------------
    # Debts
    # -------------------------------------------------------------------------

    async def list_debts(self) -> list[Debt]:
        """Newest first."""
        debts = await self._select(DEBTS_TABLE, Debt)
        return sorted(debts, key=lambda d: d.created_at, reverse=True)

    async def get_debt(self, debt_id: str) -> Optional[Debt]:
        return await self._get(DEBTS_TABLE, Debt, debt_id)

    async def create_debt(self, data: DebtCreate) -> Debt:
        now = self._clock().isoformat()
        row = data.model_dump(mode="json", exclude={"current_balance"})
        row.update(
            current_balance=str(data.starting_balance),
            created_at=now,
            updated_at=now,
        )
        debt = await self._insert(DEBTS_TABLE, Debt, row)
        logger.info("cloud_debt_created", debt_id=debt.id, name=debt.name)
        return debt

    async def update_debt(self, debt_id: str, updates: DebtUpdate) -> Debt:
        debt = await self._update(
            DEBTS_TABLE,
            Debt,
            debt_id,
            updates.changes(mode="json"),
        )
        logger.info("cloud_debt_updated", debt_id=debt_id)
        return debt

    async def delete_debt(self, debt_id: str) -> bool:
        """Delete every transaction that references a debt, then the debt."""
        if await self._get(DEBTS_TABLE, Debt, debt_id) is None:
            return False

        rows = await self._remote.select(
            TRANSACTIONS_TABLE,
            {"user_id": self._user_id, "debt_id": debt_id},
        )
        for row in rows:
            await self._remote.delete(TRANSACTIONS_TABLE, row["id"])

        await self._remote.delete(DEBTS_TABLE, debt_id)

        logger.info("cloud_debt_deleted", debt_id=debt_id, transactions_removed=len(rows))
        return True

    # -------------------------------------------------------------------------
    # Income
    # -------------------------------------------------------------------------

    async def list_income(self) -> list[IncomeSource]:
        """Oldest first."""
        income = await self._select(INCOME_TABLE, IncomeSource)
        return sorted(income, key=lambda i: i.created_at)

    async def get_income(self, income_id: str) -> Optional[IncomeSource]:
        return await self._get(INCOME_TABLE, IncomeSource, income_id)

    async def create_income(self, data: IncomeCreate) -> IncomeSource:
        now = self._clock().isoformat()
        row = data.model_dump(mode="json")
        row.update(created_at=now, updated_at=now)
        income = await self._insert(INCOME_TABLE, IncomeSource, row)
        logger.info("cloud_income_created", income_id=income.id)
        return income

    async def update_income(self, income_id: str, updates: IncomeUpdate) -> IncomeSource:
        income = await self._update(
            INCOME_TABLE,
            IncomeSource,
            income_id,
            updates.changes(mode="json"),
        )
        logger.info("cloud_income_updated", income_id=income_id)
        return income

    async def delete_income(self, income_id: str) -> bool:
        deleted = await self._delete(INCOME_TABLE, IncomeSource, income_id)
        if deleted:
            logger.info("cloud_income_deleted", income_id=income_id)
        return deleted

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    async def list_transactions(self) -> list[Transaction]:
        """Oldest first."""
        transactions = await self._select(TRANSACTIONS_TABLE, Transaction)
        return sorted(transactions, key=lambda t: t.created_at)

    async def list_transactions_for_debt(self, debt_id: str) -> list[Transaction]:
        transactions = await self._select(TRANSACTIONS_TABLE, Transaction, debt_id=debt_id)
        return sorted(reversed(transactions), key=lambda t: t.created_at, reverse=True)

    async def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        return await self._get(TRANSACTIONS_TABLE, Transaction, transaction_id)

    async def create_transaction(self, draft: TransactionDraft) -> Transaction:
        row = draft.model_dump(mode="json")
        row["created_at"] = self._clock().isoformat()
        transaction = await self._insert(TRANSACTIONS_TABLE, Transaction, row)
        logger.info(
            "cloud_transaction_created",
            transaction_id=transaction.id,
            debt_id=transaction.debt_id,
            type=transaction.type.value,
        )
        return transaction

    async def delete_transaction(self, transaction_id: str) -> bool:
        deleted = await self._delete(TRANSACTIONS_TABLE, Transaction, transaction_id)
        if deleted:
            logger.info("cloud_transaction_deleted", transaction_id=transaction_id)
        return deleted
