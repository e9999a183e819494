"""Tests for the guest-mode Local Record Store."""

import json
from decimal import Decimal

import pytest

from debt_mirror.models.entities import (
    DebtCreate,
    DebtUpdate,
    IncomeCreate,
    IncomeUpdate,
    TransactionDraft,
    TransactionType,
)
from debt_mirror.services.local_store import generate_local_id, is_local_id
from debt_mirror.services.storage import NotFoundError, StorageError


def draft(debt_id: str, amount: str, kind=TransactionType.PAYMENT) -> TransactionDraft:
    return TransactionDraft(debt_id=debt_id, type=kind, amount=Decimal(amount))


class TestLocalIds:
    """Tests for local identifier generation."""

    def test_local_ids_are_unique(self):
        """Test that ids minted back to back never collide."""
        ids = {generate_local_id() for _ in range(500)}
        assert len(ids) == 500

    def test_local_id_prefix(self):
        """Test that local ids are recognisable."""
        assert is_local_id(generate_local_id())
        assert not is_local_id("3f1c2a9e-0000-4000-8000-000000000000")


class TestLocalDebts:
    """Tests for debt CRUD in the guest namespace."""

    async def test_create_assigns_id_and_timestamps(self, local_store, clock):
        """Test that create stamps a local id and both timestamps."""
        debt = await local_store.create_debt(DebtCreate(name="Visa", principal=Decimal("500")))
        assert is_local_id(debt.id)
        assert debt.created_at == clock.now
        assert debt.updated_at == clock.now
        assert debt.current_balance == Decimal("500")

    async def test_collection_stored_as_json_array(self, local_store, kv):
        """Test that debts persist as one JSON array under the debts key."""
        await local_store.create_debt(DebtCreate(name="A", principal=Decimal("1")))
        await local_store.create_debt(DebtCreate(name="B", principal=Decimal("2")))
        stored = json.loads(kv.data["@debt_mirror_guest_debts"])
        assert [d["name"] for d in stored] == ["A", "B"]

    async def test_update_merges_and_refreshes_updated_at(self, local_store, clock):
        """Test that update merges partial fields and bumps updated_at."""
        debt = await local_store.create_debt(
            DebtCreate(name="Visa", principal=Decimal("500"), creditor_name="Bank")
        )
        clock.advance(hours=1)
        updated = await local_store.update_debt(debt.id, DebtUpdate(name="Visa Gold"))
        assert updated.name == "Visa Gold"
        assert updated.creditor_name == "Bank"
        assert updated.created_at == debt.created_at
        assert updated.updated_at == clock.now

    async def test_update_missing_raises(self, local_store):
        """Test that updating an unknown debt raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await local_store.update_debt("local_missing", DebtUpdate(name="x"))

    async def test_get_missing_returns_none(self, local_store):
        """Test that get of an unknown id is None."""
        assert await local_store.get_debt("local_missing") is None

    async def test_delete_cascades_to_transactions(self, local_store):
        """Test that deleting a debt deletes every transaction referencing it."""
        keep = await local_store.create_debt(DebtCreate(name="Keep", principal=Decimal("10")))
        drop = await local_store.create_debt(DebtCreate(name="Drop", principal=Decimal("10")))
        await local_store.create_transaction(draft(keep.id, "1"))
        await local_store.create_transaction(draft(drop.id, "2"))
        await local_store.create_transaction(draft(drop.id, "3"))

        assert await local_store.delete_debt(drop.id) is True

        remaining = await local_store.list_transactions()
        assert [t.debt_id for t in remaining] == [keep.id]
        assert await local_store.get_debt(drop.id) is None

    async def test_delete_missing_returns_false(self, local_store):
        """Test that deleting an unknown debt reports False."""
        assert await local_store.delete_debt("local_missing") is False

    async def test_failed_cascade_keeps_the_debt(self, local_store, kv):
        """Test that a failed transaction delete never leaves orphaned transactions."""
        debt = await local_store.create_debt(DebtCreate(name="Visa", principal=Decimal("10")))
        await local_store.create_transaction(draft(debt.id, "1"))
        kv.fail_on_set.add(local_store.transactions_key)

        with pytest.raises(StorageError):
            await local_store.delete_debt(debt.id)

        assert await local_store.get_debt(debt.id) is not None
        debt_ids = {d.id for d in await local_store.list_debts()}
        assert all(t.debt_id in debt_ids for t in await local_store.list_transactions())

    async def test_none_on_required_field_is_ignored(self, local_store):
        """Test that an explicit None on a required field leaves it unchanged."""
        debt = await local_store.create_debt(DebtCreate(name="Visa", principal=Decimal("10")))
        updated = await local_store.update_debt(
            debt.id, DebtUpdate(name=None, creditor_name="Bank")
        )
        assert updated.name == "Visa"
        assert updated.creditor_name == "Bank"

    async def test_none_clears_optional_field(self, local_store):
        """Test that an explicit None on an optional field clears it."""
        debt = await local_store.create_debt(
            DebtCreate(name="Visa", principal=Decimal("10"), creditor_name="Bank")
        )
        updated = await local_store.update_debt(debt.id, DebtUpdate(creditor_name=None))
        assert updated.creditor_name is None


class TestLocalIncome:
    """Tests for income CRUD in the guest namespace."""

    async def test_income_crud(self, local_store):
        """Test create, update and delete of an income source."""
        income = await local_store.create_income(
            IncomeCreate(source_name="Nurse", amount=Decimal("4000"))
        )
        updated = await local_store.update_income(income.id, IncomeUpdate(amount=Decimal("4200")))
        assert updated.amount == Decimal("4200")
        assert [i.id for i in await local_store.list_income()] == [income.id]
        assert await local_store.delete_income(income.id) is True
        assert await local_store.list_income() == []


class TestLocalTransactions:
    """Tests for transaction storage."""

    async def test_list_for_debt_newest_first(self, local_store, clock):
        """Test that a debt's transactions come back newest first."""
        debt = await local_store.create_debt(DebtCreate(name="Visa", principal=Decimal("100")))
        first = await local_store.create_transaction(draft(debt.id, "1"))
        clock.advance(minutes=1)
        second = await local_store.create_transaction(draft(debt.id, "2"))

        listed = await local_store.list_transactions_for_debt(debt.id)
        assert [t.id for t in listed] == [second.id, first.id]

    async def test_same_instant_entries_newest_first(self, local_store):
        """Test that entries sharing a timestamp keep reverse insertion order."""
        debt = await local_store.create_debt(DebtCreate(name="Visa", principal=Decimal("100")))
        first = await local_store.create_transaction(draft(debt.id, "1"))
        second = await local_store.create_transaction(draft(debt.id, "2"))

        listed = await local_store.list_transactions_for_debt(debt.id)
        assert [t.id for t in listed] == [second.id, first.id]


class TestLocalResilience:
    """Tests for degraded reads and strict writes."""

    async def test_corrupt_collection_reads_as_empty(self, local_store, kv):
        """Test that unparseable JSON degrades to no data."""
        kv.data["@debt_mirror_guest_debts"] = "{not json"
        assert await local_store.list_debts() == []

    async def test_malformed_record_is_skipped(self, local_store, kv):
        """Test that one bad record doesn't hide the good ones."""
        good = await local_store.create_debt(DebtCreate(name="Good", principal=Decimal("1")))
        stored = json.loads(kv.data["@debt_mirror_guest_debts"])
        stored.append({"id": "local_bad", "name": ""})
        kv.data["@debt_mirror_guest_debts"] = json.dumps(stored)

        assert [d.id for d in await local_store.list_debts()] == [good.id]

    async def test_failed_read_lists_nothing(self, local_store, kv):
        """Test that a storage failure on read degrades to an empty list."""
        kv.fail_on_get.add("@debt_mirror_guest_income")
        assert await local_store.list_income() == []

    async def test_failed_read_blocks_write(self, local_store, kv):
        """Test that a write never overwrites a collection it couldn't read."""
        await local_store.create_debt(DebtCreate(name="Existing", principal=Decimal("1")))
        before = kv.data["@debt_mirror_guest_debts"]
        kv.fail_on_get.add("@debt_mirror_guest_debts")

        with pytest.raises(StorageError):
            await local_store.create_debt(DebtCreate(name="New", principal=Decimal("2")))
        assert kv.data["@debt_mirror_guest_debts"] == before

    async def test_get_all_data_raises_on_failed_read(self, local_store, kv):
        """Test that the migration snapshot never mistakes unreadable for empty."""
        kv.fail_on_get.add("@debt_mirror_guest_transactions")
        with pytest.raises(StorageError):
            await local_store.get_all_data()


class TestLocalNamespace:
    """Tests for the session key and namespace clearing."""

    async def test_clear_all_removes_every_key(self, local_store, kv, clock):
        """Test that clear_all empties the whole guest namespace."""
        await local_store.create_debt(DebtCreate(name="A", principal=Decimal("1")))
        await local_store.create_income(IncomeCreate(source_name="Job", amount=Decimal("1")))
        await local_store.set_display_name("  Sam  ")
        kv.data["unrelated"] = "keep me"

        await local_store.clear_all()

        assert kv.data == {"unrelated": "keep me"}

    async def test_session_key_is_removed_last(self, local_store):
        """Test that the session key is ordered after every data key."""
        assert local_store.all_keys[-1] == local_store.session_key

    async def test_display_name_is_trimmed(self, local_store):
        """Test that the guest display name is stored trimmed."""
        await local_store.set_display_name("  Sam  ")
        assert await local_store.get_display_name() == "Sam"

    async def test_custom_prefix(self, kv, clock):
        """Test that the key prefix is configurable."""
        from debt_mirror.services.local_store import LocalRecordStore

        store = LocalRecordStore(kv, key_prefix="@other", clock=clock)
        await store.create_debt(DebtCreate(name="A", principal=Decimal("1")))
        assert "@other_debts" in kv.data
