"""
Services package.

Only the storage layer is re-exported here. The record stores, session
manager, ledger and migration modules import the audit package, which
itself depends on storage, so they are imported by full module path.
"""

from debt_mirror.services.storage import (
    AuditStorageInterface,
    ConnectionError,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsTableStore,
    InMemoryAuditStorage,
    InMemoryKeyValueStore,
    InMemoryTableStore,
    KeyValueStoreInterface,
    NotFoundError,
    RecordStoreInterface,
    RemoteError,
    RemoteTableInterface,
    SQLiteKeyValueStore,
    StorageError,
)

__all__ = [
    "AuditStorageInterface",
    "ConnectionError",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsTableStore",
    "InMemoryAuditStorage",
    "InMemoryKeyValueStore",
    "InMemoryTableStore",
    "KeyValueStoreInterface",
    "NotFoundError",
    "RecordStoreInterface",
    "RemoteError",
    "RemoteTableInterface",
    "SQLiteKeyValueStore",
    "StorageError",
]
