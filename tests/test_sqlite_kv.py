"""Tests for the aiosqlite-backed key-value store."""

from decimal import Decimal

import aiosqlite
import pytest

from debt_mirror.models.entities import DebtCreate
from debt_mirror.services.local_store import LocalRecordStore
from debt_mirror.services.storage import SQLiteKeyValueStore, StorageError
from debt_mirror.services.storage import sqlite_kv


class TestSQLiteKeyValueStore:
    """Tests for SQLiteKeyValueStore."""

    async def test_get_missing_key(self, tmp_path):
        """Test that a key that was never set reads as None."""
        store = SQLiteKeyValueStore(tmp_path / "guest.db")
        assert await store.get("nope") is None

    async def test_set_then_overwrite(self, tmp_path):
        """Test that set replaces the previous value."""
        store = SQLiteKeyValueStore(tmp_path / "guest.db")
        await store.set("k", "one")
        await store.set("k", "two")
        assert await store.get("k") == "two"

    async def test_multi_remove(self, tmp_path):
        """Test that multi_remove drops listed keys and ignores missing ones."""
        store = SQLiteKeyValueStore(tmp_path / "guest.db")
        await store.set("a", "1")
        await store.set("b", "2")
        await store.set("c", "3")

        await store.multi_remove(["a", "b", "missing"])

        assert await store.get("a") is None
        assert await store.get("b") is None
        assert await store.get("c") == "3"

    async def test_creates_parent_directory(self, tmp_path):
        """Test that the database directory is created on first use."""
        path = tmp_path / "nested" / "dir" / "guest.db"
        store = SQLiteKeyValueStore(path)
        await store.set("k", "v")
        assert path.exists()

    async def test_survives_reopen(self, tmp_path):
        """Test that guest records persist across store instances."""
        path = tmp_path / "guest.db"
        first = LocalRecordStore(SQLiteKeyValueStore(path))
        debt = await first.create_debt(DebtCreate(name="Visa", principal=Decimal("250.50")))

        second = LocalRecordStore(SQLiteKeyValueStore(path))
        restored = await second.get_debt(debt.id)

        assert restored is not None
        assert restored.current_balance == Decimal("250.50")

    async def test_failed_setup_closes_connection(self, tmp_path, monkeypatch):
        """Test that a connection whose schema setup fails is closed."""
        closed = []
        real_close = aiosqlite.Connection.close

        async def counting_close(self):
            closed.append(self)
            await real_close(self)

        monkeypatch.setattr(aiosqlite.Connection, "close", counting_close)
        monkeypatch.setattr(sqlite_kv, "SCHEMA", "CREATE TABLE kv_store (")
        store = SQLiteKeyValueStore(tmp_path / "guest.db")

        with pytest.raises(StorageError):
            await store.get("k")

        assert len(closed) == 1
