"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage:
- on-device key-value storage (SQLite via aiosqlite)
- cloud tables (Google Sheets)
- in-memory versions of both, for tests
"""

from debt_mirror.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    KeyValueStoreInterface,
    NotFoundError,
    RecordStoreInterface,
    RemoteError,
    RemoteTableInterface,
    StorageError,
)
from debt_mirror.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsTableStore,
)
from debt_mirror.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryKeyValueStore,
    InMemoryTableStore,
)
from debt_mirror.services.storage.sqlite_kv import SQLiteKeyValueStore

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "KeyValueStoreInterface",
    "RecordStoreInterface",
    "RemoteTableInterface",
    # Exceptions
    "ConnectionError",
    "NotFoundError",
    "RemoteError",
    "StorageError",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsTableStore",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryKeyValueStore",
    "InMemoryTableStore",
    # On-device implementation
    "SQLiteKeyValueStore",
]
