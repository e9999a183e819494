"""
Local Record Store

Guest-mode repository of debts, income sources, transactions and the
guest session, persisted in the on-device key-value store.

DESIGN DECISION: One key per collection, holding a JSON array.
Every write is read-modify-write of the whole collection. A record can
never be half-written, but two concurrent writers to the same
collection would clobber one another. We accept that: there is one
user on one device.

Reads that the UI makes (list_*, get_*) degrade to "no data" when a
collection is missing or unreadable. Writes never do: a failed read
during read-modify-write raises StorageError instead of overwriting the
collection with an empty one.
"""

import itertools
import json
import secrets
import time
from typing import Any, Optional, Type, TypeVar

import structlog
from pydantic import BaseModel, ValidationError

from debt_mirror.models.entities import (
    Debt,
    DebtCreate,
    DebtUpdate,
    GuestData,
    GuestSession,
    IncomeCreate,
    IncomeSource,
    IncomeUpdate,
    Transaction,
    TransactionDraft,
)
from debt_mirror.services.clock import Clock, utc_now
from debt_mirror.services.storage.interface import (
    KeyValueStoreInterface,
    NotFoundError,
    RecordStoreInterface,
    StorageError,
)


logger = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_local_id_counter = itertools.count()


def generate_local_id() -> str:
    """
    Generate an identifier for a guest-mode entity.

    Millisecond timestamp plus a process-wide counter plus random bits,
    so two ids minted in the same millisecond still differ.
    """
    millis = int(time.time() * 1000)
    return f"local_{millis}_{next(_local_id_counter):x}{secrets.token_hex(4)}"


def is_local_id(value: str) -> bool:
    return value.startswith("local_")


class LocalRecordStore(RecordStoreInterface):
    """
    Guest records in the on-device key-value store.

    Usage:
        store = LocalRecordStore(SQLiteKeyValueStore(path))
        debt = await store.create_debt(DebtCreate(name="Visa", principal=500))
    """

    def __init__(
        self,
        kv: KeyValueStoreInterface,
        key_prefix: str = "@debt_mirror_guest",
        clock: Clock = utc_now,
    ):
        self._kv = kv
        self._prefix = key_prefix
        self._clock = clock

    # -------------------------------------------------------------------------
    # Keys
    # -------------------------------------------------------------------------

    @property
    def session_key(self) -> str:
        return f"{self._prefix}_session"

    @property
    def debts_key(self) -> str:
        return f"{self._prefix}_debts"

    @property
    def income_key(self) -> str:
        return f"{self._prefix}_income"

    @property
    def transactions_key(self) -> str:
        return f"{self._prefix}_transactions"

    @property
    def display_name_key(self) -> str:
        return f"{self._prefix}_display_name"

    @property
    def all_keys(self) -> list[str]:
        """Every guest key. The session key is last."""
        return [
            self.debts_key,
            self.income_key,
            self.transactions_key,
            self.display_name_key,
            self.session_key,
        ]

    # -------------------------------------------------------------------------
    # Raw collection access
    # -------------------------------------------------------------------------

    async def _read_raw(self, key: str) -> list[dict[str, Any]]:
        """
        Read a collection as raw dicts for read-modify-write.

        Storage failures propagate. Corrupt JSON is logged and treated as
        an empty collection, since it cannot be repaired anyway.
        """
        data = await self._kv.get(key)
        if not data:
            return []
        try:
            items = json.loads(data)
        except json.JSONDecodeError as e:
            logger.warning("local_collection_corrupt", key=key, error=str(e))
            return []
        if not isinstance(items, list):
            logger.warning("local_collection_corrupt", key=key, error="not a list")
            return []
        return [item for item in items if isinstance(item, dict)]

    async def _write_raw(self, key: str, items: list[dict[str, Any]]) -> None:
        await self._kv.set(key, json.dumps(items))

    async def _read_models(self, key: str, model: Type[ModelT]) -> list[ModelT]:
        """
        Read a collection for display.

        Never raises: an unreadable collection is an empty one and a
        malformed record is skipped.
        """
        try:
            items = await self._read_raw(key)
        except StorageError as e:
            logger.error("local_collection_read_failed", key=key, error=str(e))
            return []

        records = []
        for item in items:
            try:
                records.append(model.model_validate(item))
            except ValidationError as e:
                logger.warning(
                    "local_record_malformed",
                    key=key,
                    record_id=item.get("id"),
                    error=str(e),
                )
        return records

    async def _get_model(
        self,
        key: str,
        model: Type[ModelT],
        record_id: str,
    ) -> Optional[ModelT]:
        for record in await self._read_models(key, model):
            if getattr(record, "id") == record_id:
                return record
        return None

    async def _append(self, key: str, record: BaseModel) -> None:
        items = await self._read_raw(key)
        items.append(record.model_dump(mode="json"))
        await self._write_raw(key, items)

    async def _merge(
        self,
        key: str,
        model: Type[ModelT],
        record_id: str,
        updates: dict[str, Any],
    ) -> ModelT:
        items = await self._read_raw(key)
        for index, item in enumerate(items):
            if item.get("id") != record_id:
                continue
            merged = {**item, **updates}
            merged["updated_at"] = self._clock().isoformat()
            record = model.model_validate(merged)
            items[index] = record.model_dump(mode="json")
            await self._write_raw(key, items)
            return record
        raise NotFoundError(f"{model.__name__} not found: {record_id}")

    async def _remove(self, key: str, record_id: str) -> bool:
        items = await self._read_raw(key)
        remaining = [item for item in items if item.get("id") != record_id]
        if len(remaining) == len(items):
            return False
        await self._write_raw(key, remaining)
        return True

    # -------------------------------------------------------------------------
    # Session
    # -------------------------------------------------------------------------

    async def read_session(self) -> Optional[GuestSession]:
        """Read the persisted session, or None if absent or unreadable."""
        try:
            data = await self._kv.get(self.session_key)
        except StorageError as e:
            logger.error("guest_session_read_failed", error=str(e))
            return None
        if not data:
            return None
        try:
            return GuestSession.model_validate_json(data)
        except ValidationError as e:
            logger.warning("guest_session_corrupt", error=str(e))
            return None

    async def write_session(self, session: GuestSession) -> None:
        await self._kv.set(self.session_key, session.model_dump_json())

    async def clear_all(self) -> None:
        """
        Remove the session and every guest collection.

        The session key goes last, so the session is never gone while
        its data is still present.
        """
        await self._kv.multi_remove(self.all_keys)
        logger.info("guest_namespace_cleared")

    async def get_display_name(self) -> Optional[str]:
        try:
            return await self._kv.get(self.display_name_key)
        except StorageError as e:
            logger.error("guest_display_name_read_failed", error=str(e))
            return None

    async def set_display_name(self, name: str) -> None:
        await self._kv.set(self.display_name_key, name.strip())

    # -------------------------------------------------------------------------
    # Debts
    # -------------------------------------------------------------------------

    async def list_debts(self) -> list[Debt]:
        return await self._read_models(self.debts_key, Debt)

    async def get_debt(self, debt_id: str) -> Optional[Debt]:
        return await self._get_model(self.debts_key, Debt, debt_id)

    async def create_debt(self, data: DebtCreate) -> Debt:
        now = self._clock()
        debt = Debt(
            **data.model_dump(exclude={"current_balance"}),
            id=generate_local_id(),
            current_balance=data.starting_balance,
            created_at=now,
            updated_at=now,
        )
        await self._append(self.debts_key, debt)
        logger.info("local_debt_saved", debt_id=debt.id, name=debt.name)
        return debt

    async def update_debt(self, debt_id: str, updates: DebtUpdate) -> Debt:
        debt = await self._merge(
            self.debts_key,
            Debt,
            debt_id,
            updates.changes(mode="json"),
        )
        logger.info("local_debt_updated", debt_id=debt_id)
        return debt

    async def delete_debt(self, debt_id: str) -> bool:
        """
        Delete every transaction that references a debt, then the debt.

        The debt goes last, so a failure partway leaves a debt with a
        shortened ledger that rebuild_balance can repair, never
        transactions pointing at nothing.
        """
        debts = await self._read_raw(self.debts_key)
        if not any(item.get("id") == debt_id for item in debts):
            return False

        transactions = await self._read_raw(self.transactions_key)
        remaining = [t for t in transactions if t.get("debt_id") != debt_id]
        if len(remaining) != len(transactions):
            await self._write_raw(self.transactions_key, remaining)

        await self._remove(self.debts_key, debt_id)

        logger.info(
            "local_debt_deleted",
            debt_id=debt_id,
            transactions_removed=len(transactions) - len(remaining),
        )
        return True

    # -------------------------------------------------------------------------
    # Income
    # -------------------------------------------------------------------------

    async def list_income(self) -> list[IncomeSource]:
        return await self._read_models(self.income_key, IncomeSource)

    async def get_income(self, income_id: str) -> Optional[IncomeSource]:
        return await self._get_model(self.income_key, IncomeSource, income_id)

    async def create_income(self, data: IncomeCreate) -> IncomeSource:
        now = self._clock()
        income = IncomeSource(
            **data.model_dump(),
            id=generate_local_id(),
            created_at=now,
            updated_at=now,
        )
        await self._append(self.income_key, income)
        logger.info("local_income_saved", income_id=income.id, source=income.source_name)
        return income

    async def update_income(self, income_id: str, updates: IncomeUpdate) -> IncomeSource:
        income = await self._merge(
            self.income_key,
            IncomeSource,
            income_id,
            updates.changes(mode="json"),
        )
        logger.info("local_income_updated", income_id=income_id)
        return income

    async def delete_income(self, income_id: str) -> bool:
        deleted = await self._remove(self.income_key, income_id)
        if deleted:
            logger.info("local_income_deleted", income_id=income_id)
        return deleted

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    async def list_transactions(self) -> list[Transaction]:
        """All guest transactions in creation order."""
        return await self._read_models(self.transactions_key, Transaction)

    async def list_transactions_for_debt(self, debt_id: str) -> list[Transaction]:
        transactions = [
            t for t in await self.list_transactions() if t.debt_id == debt_id
        ]
        # Reverse first so same-instant entries also come out newest first
        return sorted(reversed(transactions), key=lambda t: t.created_at, reverse=True)

    async def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        return await self._get_model(self.transactions_key, Transaction, transaction_id)

    async def create_transaction(self, draft: TransactionDraft) -> Transaction:
        transaction = Transaction(
            **draft.model_dump(),
            id=generate_local_id(),
            created_at=self._clock(),
        )
        await self._append(self.transactions_key, transaction)
        logger.info(
            "local_transaction_saved",
            transaction_id=transaction.id,
            debt_id=transaction.debt_id,
            type=transaction.type.value,
        )
        return transaction

    async def delete_transaction(self, transaction_id: str) -> bool:
        deleted = await self._remove(self.transactions_key, transaction_id)
        if deleted:
            logger.info("local_transaction_deleted", transaction_id=transaction_id)
        return deleted

    # -------------------------------------------------------------------------
    # Migration support
    # -------------------------------------------------------------------------

    async def get_all_data(self) -> GuestData:
        """
        Snapshot every guest collection.

        Unlike the display reads, this raises StorageError if a collection
        cannot be read, so a migration never mistakes "unreadable" for
        "empty" and clears data it never copied.
        """
        debts = await self._read_raw(self.debts_key)
        income = await self._read_raw(self.income_key)
        transactions = await self._read_raw(self.transactions_key)
        return GuestData(
            debts=self._validate_all(debts, Debt),
            income=self._validate_all(income, IncomeSource),
            transactions=self._validate_all(transactions, Transaction),
        )

    def _validate_all(self, items: list[dict[str, Any]], model: Type[ModelT]) -> list[ModelT]:
        records = []
        for item in items:
            try:
                records.append(model.model_validate(item))
            except ValidationError as e:
                logger.warning("local_record_malformed", record_id=item.get("id"), error=str(e))
        return records

    async def has_data(self) -> bool:
        data = await self.get_all_data()
        return not data.is_empty
