"""
In-Memory Storage Backends

Dict-backed implementations of every storage interface. Used by the
test suite and for ephemeral runs where nothing should touch disk or
network.

Each backend supports failure injection so callers can exercise the
error paths of the layers above it.
"""

import copy
from typing import Any, Callable, Optional
from uuid import uuid4

from debt_mirror.models.audit import AuditEvent
from debt_mirror.services.storage.interface import (
    AuditStorageInterface,
    KeyValueStoreInterface,
    NotFoundError,
    RemoteError,
    RemoteTableInterface,
    StorageError,
)


class InMemoryKeyValueStore(KeyValueStoreInterface):
    """
    Key-value store held in a dict.

    multi_remove deletes keys one at a time, in order, so a key listed
    in fail_on_remove leaves every earlier key removed and every later
    key in place, like a device store that dies mid-clear.
    """

    def __init__(self, initial: Optional[dict[str, str]] = None):
        self.data: dict[str, str] = dict(initial or {})
        self.fail_on_get: set[str] = set()
        self.fail_on_set: set[str] = set()
        self.fail_on_remove: set[str] = set()

    async def get(self, key: str) -> Optional[str]:
        if key in self.fail_on_get:
            raise StorageError(f"Simulated read failure for {key}")
        return self.data.get(key)

    async def set(self, key: str, value: str) -> None:
        if key in self.fail_on_set:
            raise StorageError(f"Simulated write failure for {key}")
        self.data[key] = value

    async def multi_remove(self, keys: list[str]) -> None:
        for key in keys:
            if key in self.fail_on_remove:
                raise StorageError(f"Simulated remove failure for {key}")
            self.data.pop(key, None)


class InMemoryTableStore(RemoteTableInterface):
    """
    Cloud table store held in dicts, one per table.

    Issues uuid4 ids like the real backend. Set fail_insert to a
    predicate (table, row) -> bool to make matching inserts raise
    RemoteError. fail_update and fail_delete take (table, row_id).
    """

    def __init__(self):
        self.tables: dict[str, dict[str, dict[str, Any]]] = {}
        self.insert_calls: list[tuple[str, dict[str, Any]]] = []
        self.fail_insert: Optional[Callable[[str, dict[str, Any]], bool]] = None
        self.fail_update: Optional[Callable[[str, str], bool]] = None
        self.fail_delete: Optional[Callable[[str, str], bool]] = None

    def _table(self, table: str) -> dict[str, dict[str, Any]]:
        return self.tables.setdefault(table, {})

    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        self.insert_calls.append((table, dict(row)))
        if self.fail_insert and self.fail_insert(table, row):
            raise RemoteError(f"Simulated insert failure on {table}")
        stored = copy.deepcopy(row)
        stored["id"] = str(uuid4())
        self._table(table)[stored["id"]] = stored
        return copy.deepcopy(stored)

    async def update(
        self,
        table: str,
        row_id: str,
        patch: dict[str, Any],
    ) -> dict[str, Any]:
        if self.fail_update and self.fail_update(table, row_id):
            raise RemoteError(f"Simulated update failure on {table}")
        rows = self._table(table)
        if row_id not in rows:
            raise NotFoundError(f"{table} row not found: {row_id}")
        rows[row_id].update(copy.deepcopy(patch))
        rows[row_id]["id"] = row_id
        return copy.deepcopy(rows[row_id])

    async def delete(self, table: str, row_id: str) -> bool:
        if self.fail_delete and self.fail_delete(table, row_id):
            raise RemoteError(f"Simulated delete failure on {table}")
        return self._table(table).pop(row_id, None) is not None

    async def select(
        self,
        table: str,
        filters: Optional[dict[str, Any]] = None,
    ) -> list[dict[str, Any]]:
        filters = filters or {}
        return [
            copy.deepcopy(row)
            for row in self._table(table).values()
            if all(row.get(column) == value for column, value in filters.items())
        ]

    def count(self, table: str) -> int:
        return len(self._table(table))


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only audit log held in a list."""

    def __init__(self):
        self.events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self.events.append(event)
        return True

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        ordered = sorted(self.events, key=lambda e: e.timestamp, reverse=True)
        return ordered[:limit]
