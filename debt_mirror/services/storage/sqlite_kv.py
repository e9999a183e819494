"""
SQLite Key-Value Storage

DESIGN DECISION: Guest data lives in a single-table SQLite file on the
device. SQLite gives us durable, atomic single-row writes for free, and
aiosqlite keeps every call non-blocking.

The table is a plain key -> text map. Collections are stored as one
JSON array per key by the record store; this module never looks inside
the values.
"""

from pathlib import Path
from typing import Optional, Union

import aiosqlite
import structlog

from debt_mirror.services.storage.interface import (
    KeyValueStoreInterface,
    StorageError,
)


SCHEMA = """
CREATE TABLE IF NOT EXISTS kv_store (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
)
"""

logger = structlog.get_logger(__name__)


class SQLiteKeyValueStore(KeyValueStoreInterface):
    """
    Durable key-value store backed by aiosqlite.

    A connection is opened per operation. Guest traffic is one user
    tapping buttons, so there is nothing to gain from pooling.
    """

    def __init__(self, database_path: Union[str, Path]):
        self._database_path = Path(database_path)
        self._initialized = False

    async def _connect(self) -> aiosqlite.Connection:
        if not self._initialized:
            self._database_path.parent.mkdir(parents=True, exist_ok=True)
        db = await aiosqlite.connect(self._database_path)
        try:
            await db.execute("PRAGMA journal_mode=WAL")
            await db.execute("PRAGMA busy_timeout=30000")
            if not self._initialized:
                await db.execute(SCHEMA)
                await db.commit()
                self._initialized = True
        except Exception:
            await db.close()
            raise
        return db

    async def get(self, key: str) -> Optional[str]:
        try:
            db = await self._connect()
            try:
                cursor = await db.execute(
                    "SELECT value FROM kv_store WHERE key = ?", (key,)
                )
                row = await cursor.fetchone()
            finally:
                await db.close()
        except aiosqlite.Error as e:
            raise StorageError(f"Failed to read {key}: {e}") from e
        return row[0] if row else None

    async def set(self, key: str, value: str) -> None:
        try:
            db = await self._connect()
            try:
                await db.execute(
                    "INSERT INTO kv_store (key, value) VALUES (?, ?) "
                    "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                    (key, value),
                )
                await db.commit()
            finally:
                await db.close()
        except aiosqlite.Error as e:
            raise StorageError(f"Failed to write {key}: {e}") from e

    async def multi_remove(self, keys: list[str]) -> None:
        """Remove all keys in one SQL transaction."""
        if not keys:
            return
        try:
            db = await self._connect()
            try:
                for key in keys:
                    await db.execute("DELETE FROM kv_store WHERE key = ?", (key,))
                await db.commit()
            except Exception:
                await db.rollback()
                raise
            finally:
                await db.close()
        except aiosqlite.Error as e:
            raise StorageError(f"Failed to remove {len(keys)} keys: {e}") from e
        logger.debug("kv_keys_removed", count=len(keys))
