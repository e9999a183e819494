"""
Abstract Storage Interfaces

DESIGN DECISION: We define abstract interfaces for every storage seam.
This allows us to:
1. Run the same record logic on-device (guest) and in the cloud (account)
2. Use in-memory storage for testing
3. Swap the on-device store or the cloud tables without touching the ledger
4. Keep business logic decoupled from storage implementation

Three layers:
- KeyValueStoreInterface: raw durable strings, one value per key
- RemoteTableInterface: rows in named cloud tables
- RecordStoreInterface: typed debts/income/transactions, built on either
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from debt_mirror.models.audit import AuditEvent
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


class KeyValueStoreInterface(ABC):
    """
    Durable on-device key-value storage.

    Values are opaque strings; the record store JSON-encodes whole
    collections into them.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """
        Read a value.

        Returns:
            The stored string, or None if the key was never set

        Raises:
            StorageError: If the underlying read fails
        """
        pass

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """
        Write a value, replacing any previous one.

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def multi_remove(self, keys: list[str]) -> None:
        """
        Remove several keys, in the order given.

        Missing keys are ignored.

        Raises:
            StorageError: If any removal fails
        """
        pass


class RemoteTableInterface(ABC):
    """
    Row operations against the authenticated cloud store.

    Rows are plain dicts of JSON-compatible values. The store owns
    primary keys: insert assigns "id".
    """

    @abstractmethod
    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        """
        Insert a row and return it with its server-issued "id".

        Raises:
            RemoteError: If the insert fails
        """
        pass

    @abstractmethod
    async def update(
        self,
        table: str,
        row_id: str,
        patch: dict[str, Any],
    ) -> dict[str, Any]:
        """
        Merge patch into an existing row and return the stored row.

        Raises:
            NotFoundError: If no row has this id
            RemoteError: If the update fails
        """
        pass

    @abstractmethod
    async def delete(self, table: str, row_id: str) -> bool:
        """
        Delete a row by id.

        Returns:
            True if a row was deleted, False if none matched

        Raises:
            RemoteError: If the delete fails
        """
        pass

    @abstractmethod
    async def select(
        self,
        table: str,
        filters: Optional[dict[str, Any]] = None,
    ) -> list[dict[str, Any]]:
        """
        Return all rows whose columns equal every filter value.

        Raises:
            RemoteError: If the read fails
        """
        pass


class RecordStoreInterface(ABC):
    """
    Typed CRUD over debts, income sources and transactions.

    Implemented on-device by LocalRecordStore and in the cloud by
    CloudRecordStore. Neither implementation computes balances; that is
    the ledger service's job.

    Common contract:
    - get_* returns None when the record is missing
    - update_* raises NotFoundError when the record is missing
    - delete_* returns False when the record is missing
    - delete_debt removes the debt's transactions too
    """

    # Debts
    @abstractmethod
    async def list_debts(self) -> list[Debt]:
        pass

    @abstractmethod
    async def get_debt(self, debt_id: str) -> Optional[Debt]:
        pass

    @abstractmethod
    async def create_debt(self, data: DebtCreate) -> Debt:
        pass

    @abstractmethod
    async def update_debt(self, debt_id: str, updates: DebtUpdate) -> Debt:
        pass

    @abstractmethod
    async def delete_debt(self, debt_id: str) -> bool:
        pass

    # Income
    @abstractmethod
    async def list_income(self) -> list[IncomeSource]:
        pass

    @abstractmethod
    async def get_income(self, income_id: str) -> Optional[IncomeSource]:
        pass

    @abstractmethod
    async def create_income(self, data: IncomeCreate) -> IncomeSource:
        pass

    @abstractmethod
    async def update_income(self, income_id: str, updates: IncomeUpdate) -> IncomeSource:
        pass

    @abstractmethod
    async def delete_income(self, income_id: str) -> bool:
        pass

    # Transactions
    @abstractmethod
    async def list_transactions(self) -> list[Transaction]:
        pass

    @abstractmethod
    async def list_transactions_for_debt(self, debt_id: str) -> list[Transaction]:
        """All transactions of one debt, newest first."""
        pass

    @abstractmethod
    async def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        pass

    @abstractmethod
    async def create_transaction(self, draft: TransactionDraft) -> Transaction:
        pass

    @abstractmethod
    async def delete_transaction(self, transaction_id: str) -> bool:
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events (newest first).
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass


class RemoteError(StorageError):
    """A cloud insert, update, delete or select failed."""
    pass
