"""Tests for the Ledger Engine and Ledger Service."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from debt_mirror.models.audit import AuditEventType
from debt_mirror.models.entities import (
    Debt,
    DebtCreate,
    DebtStatus,
    DebtUpdate,
    Transaction,
    TransactionCreate,
    TransactionType,
)
from debt_mirror.services.ledger import (
    apply_transaction,
    monthly_interest,
    replay_balance,
    reverse_transaction,
)
from debt_mirror.services.storage import NotFoundError, StorageError


NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_debt(balance: str, rate: str = None) -> Debt:
    return Debt(
        id="local_1_a",
        name="Loan",
        principal=Decimal("1000"),
        current_balance=Decimal(balance),
        interest_rate=Decimal(rate) if rate is not None else None,
        created_at=NOW,
        updated_at=NOW,
    )


def make_transaction(kind: TransactionType, amount: str, interest: str = "0") -> Transaction:
    return Transaction(
        id="local_2_b",
        debt_id="local_1_a",
        type=kind,
        amount=Decimal(amount),
        interest_amount=Decimal(interest),
        created_at=NOW,
    )


class TestApplyTransaction:
    """Tests for the pure balance arithmetic."""

    def test_borrow_adds_one_month_interest(self):
        """Test the 1000 at 12% borrow-100 example."""
        change = apply_transaction(make_debt("1000", "12"), TransactionType.BORROW, Decimal("100"))
        assert change.interest_amount == Decimal("1")
        assert change.new_balance == Decimal("1101")

    def test_borrow_without_rate_has_no_interest(self):
        """Test that a debt with no rate accrues nothing on borrow."""
        change = apply_transaction(make_debt("50"), TransactionType.BORROW, Decimal("100"))
        assert change.interest_amount == Decimal("0")
        assert change.new_balance == Decimal("150")

    def test_borrow_with_zero_rate_has_no_interest(self):
        """Test that a zero rate is the same as no rate."""
        change = apply_transaction(make_debt("50", "0"), TransactionType.BORROW, Decimal("100"))
        assert change.interest_amount == Decimal("0")

    def test_explicit_interest_wins(self):
        """Test that caller-supplied interest replaces the computed one."""
        change = apply_transaction(
            make_debt("1000", "12"),
            TransactionType.BORROW,
            Decimal("100"),
            explicit_interest=Decimal("5"),
        )
        assert change.interest_amount == Decimal("5")
        assert change.new_balance == Decimal("1105")

    def test_payment_never_carries_interest(self):
        """Test that payments subtract and never accrue interest."""
        change = apply_transaction(
            make_debt("1101", "12"),
            TransactionType.PAYMENT,
            Decimal("1101"),
            explicit_interest=Decimal("3"),
        )
        assert change.interest_amount == Decimal("0")
        assert change.new_balance == Decimal("0")

    def test_overpayment_clamps_to_zero(self):
        """Test that paying more than owed leaves a zero balance."""
        change = apply_transaction(make_debt("40"), TransactionType.PAYMENT, Decimal("100"))
        assert change.new_balance == Decimal("0")

    def test_initial_sets_balance(self):
        """Test that the initial entry sets the balance outright."""
        change = apply_transaction(make_debt("999", "12"), TransactionType.INITIAL, Decimal("750"))
        assert change.new_balance == Decimal("750")
        assert change.interest_amount == Decimal("0")

    def test_interest_is_not_rounded(self):
        """Test that computed interest keeps full Decimal precision."""
        assert monthly_interest(Decimal("100"), Decimal("7")) == (
            Decimal("100") * Decimal("0.07") / Decimal("12")
        )


class TestReverseTransaction:
    """Tests for undoing a transaction."""

    def test_reverse_payment_restores_balance(self):
        """Test that reversing the 1101 payment restores 1101."""
        payment = make_transaction(TransactionType.PAYMENT, "1101")
        assert reverse_transaction(make_debt("0"), payment) == Decimal("1101")

    def test_reverse_borrow_removes_amount_and_interest(self):
        """Test that reversing a borrow takes back principal and interest."""
        borrow = make_transaction(TransactionType.BORROW, "100", "1")
        assert reverse_transaction(make_debt("1101"), borrow) == Decimal("1000")

    def test_reverse_clamps_to_zero(self):
        """Test that reversal never produces a negative balance."""
        borrow = make_transaction(TransactionType.BORROW, "100", "1")
        assert reverse_transaction(make_debt("20"), borrow) == Decimal("0")

    @pytest.mark.parametrize("kind,amount", [
        (TransactionType.BORROW, "250"),
        (TransactionType.PAYMENT, "300"),
        (TransactionType.PAYMENT, "1000"),
    ])
    def test_reverse_inverts_single_step(self, kind, amount):
        """Test that reverse(apply(t)) restores the prior balance when nothing clamped."""
        debt = make_debt("1000", "18")
        change = apply_transaction(debt, kind, Decimal(amount))
        after = debt.model_copy(update={"current_balance": change.new_balance})
        applied = make_transaction(kind, amount, str(change.interest_amount))
        assert reverse_transaction(after, applied) == Decimal("1000")

    def test_clamped_payment_is_not_exactly_inverted(self):
        """Test the documented boundary: clamping loses information."""
        debt = make_debt("40")
        change = apply_transaction(debt, TransactionType.PAYMENT, Decimal("100"))
        after = debt.model_copy(update={"current_balance": change.new_balance})
        restored = reverse_transaction(after, make_transaction(TransactionType.PAYMENT, "100"))
        assert restored == Decimal("100")


class TestReplay:
    """Tests for replaying a ledger."""

    def test_replay_matches_incremental_application(self):
        """Test that replay equals folding apply over the history."""
        debt = make_debt("1000", "12")
        history = [make_transaction(TransactionType.INITIAL, "1000")]
        steps = [
            (TransactionType.BORROW, "100"),
            (TransactionType.PAYMENT, "250"),
            (TransactionType.BORROW, "40"),
            (TransactionType.PAYMENT, "5000"),
            (TransactionType.BORROW, "60"),
        ]
        for kind, amount in steps:
            change = apply_transaction(debt, kind, Decimal(amount))
            history.append(make_transaction(kind, amount, str(change.interest_amount)))
            debt = debt.model_copy(update={"current_balance": change.new_balance})

        assert replay_balance(history) == debt.current_balance

    def test_replay_uses_stored_interest(self):
        """Test that replay doesn't recompute interest from today's rate."""
        history = [
            make_transaction(TransactionType.INITIAL, "100"),
            make_transaction(TransactionType.BORROW, "100", "7"),
        ]
        assert replay_balance(history) == Decimal("207")

    def test_replay_empty_is_opening_balance(self):
        """Test that an empty ledger leaves the opening balance."""
        assert replay_balance([]) == Decimal("0")
        assert replay_balance([], opening_balance=Decimal("12")) == Decimal("12")


class TestLedgerService:
    """Tests for the ledger with persistence."""

    async def test_open_debt_writes_initial_transaction(self, ledger, local_store):
        """Test that every new debt gets exactly one initial entry."""
        debt = await ledger.open_debt(
            DebtCreate(name="Loan", principal=Decimal("1000"), current_balance=Decimal("800"))
        )
        transactions = await local_store.list_transactions_for_debt(debt.id)
        assert len(transactions) == 1
        assert transactions[0].type == TransactionType.INITIAL
        assert transactions[0].amount == Decimal("800")
        assert transactions[0].new_balance == Decimal("800")

    async def test_open_debt_rolls_back_when_ledger_write_fails(self, ledger, local_store, kv):
        """Test that a debt never exists without its initial entry."""
        kv.fail_on_set.add("@debt_mirror_guest_transactions")
        with pytest.raises(StorageError):
            await ledger.open_debt(DebtCreate(name="Loan", principal=Decimal("1000")))
        assert await local_store.list_debts() == []

    async def test_worked_example(self, ledger, local_store):
        """Test borrow, full payment and reversal of the payment."""
        debt = await ledger.open_debt(
            DebtCreate(name="Loan", principal=Decimal("1000"), interest_rate=Decimal("12"))
        )

        borrow = await ledger.record_transaction(
            TransactionCreate(debt_id=debt.id, type=TransactionType.BORROW, amount=Decimal("100"))
        )
        assert borrow.interest_amount == Decimal("1")
        assert borrow.new_balance == Decimal("1101")

        payment = await ledger.record_transaction(
            TransactionCreate(debt_id=debt.id, type=TransactionType.PAYMENT, amount=Decimal("1101"))
        )
        paid = await local_store.get_debt(debt.id)
        assert paid.current_balance == Decimal("0")
        assert paid.status == DebtStatus.PAID_OFF

        restored = await ledger.delete_transaction(payment.id)
        assert restored == Decimal("1101")
        reopened = await local_store.get_debt(debt.id)
        assert reopened.current_balance == Decimal("1101")
        assert reopened.status == DebtStatus.ACTIVE

    async def test_borrow_reactivates_paid_off_debt(self, ledger, local_store):
        """Test that borrowing against a paid-off debt makes it active."""
        debt = await ledger.open_debt(DebtCreate(name="Card", principal=Decimal("10")))
        await ledger.record_transaction(
            TransactionCreate(debt_id=debt.id, type=TransactionType.PAYMENT, amount=Decimal("10"))
        )
        await ledger.record_transaction(
            TransactionCreate(debt_id=debt.id, type=TransactionType.BORROW, amount=Decimal("5"))
        )
        assert (await local_store.get_debt(debt.id)).status == DebtStatus.ACTIVE

    async def test_record_against_missing_debt(self, ledger):
        """Test that recording against an unknown debt raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await ledger.record_transaction(
                TransactionCreate(debt_id="local_missing", type=TransactionType.PAYMENT, amount=Decimal("1"))
            )

    async def test_record_initial_rejected(self, ledger, local_store):
        """Test that a second initial entry can't be recorded."""
        debt = await ledger.open_debt(DebtCreate(name="Card", principal=Decimal("10")))
        with pytest.raises(ValueError):
            await ledger.record_transaction(
                TransactionCreate(debt_id=debt.id, type=TransactionType.INITIAL, amount=Decimal("1"))
            )

    async def test_delete_missing_transaction(self, ledger):
        """Test that deleting an unknown transaction raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await ledger.delete_transaction("local_missing")

    async def test_transaction_written_before_balance(self, ledger, local_store, kv, audit_storage):
        """Test that a failed balance write leaves the transaction for a rebuild."""
        debt = await ledger.open_debt(DebtCreate(name="Card", principal=Decimal("100")))
        kv.fail_on_set.add("@debt_mirror_guest_debts")

        with pytest.raises(StorageError):
            await ledger.record_transaction(
                TransactionCreate(debt_id=debt.id, type=TransactionType.PAYMENT, amount=Decimal("30"))
            )

        assert len(await local_store.list_transactions_for_debt(debt.id)) == 2
        assert (await local_store.get_debt(debt.id)).current_balance == Decimal("100")
        assert audit_storage.events[-1].event_type == AuditEventType.STORAGE_ERROR

        kv.fail_on_set.clear()
        assert await ledger.rebuild_balance(debt.id) == Decimal("70")
        assert (await local_store.get_debt(debt.id)).current_balance == Decimal("70")

    async def test_rebuild_matches_stored_balance(self, ledger, local_store):
        """Test that replaying a healthy ledger reproduces the stored balance."""
        debt = await ledger.open_debt(
            DebtCreate(name="Loan", principal=Decimal("1000"), interest_rate=Decimal("9.5"))
        )
        for kind, amount in [
            (TransactionType.BORROW, "120"),
            (TransactionType.PAYMENT, "75.25"),
            (TransactionType.BORROW, "33"),
        ]:
            await ledger.record_transaction(
                TransactionCreate(debt_id=debt.id, type=kind, amount=Decimal(amount))
            )
        stored = (await local_store.get_debt(debt.id)).current_balance
        assert await ledger.rebuild_balance(debt.id) == stored

    async def test_record_is_audited(self, ledger, audit_storage):
        """Test that ledger writes are audited with the guest mode."""
        debt = await ledger.open_debt(DebtCreate(name="Card", principal=Decimal("10")))
        await ledger.record_transaction(
            TransactionCreate(debt_id=debt.id, type=TransactionType.PAYMENT, amount=Decimal("4"))
        )
        recorded = audit_storage.events[-1]
        assert recorded.event_type == AuditEventType.TRANSACTION_RECORDED
        assert recorded.mode == "guest"
        assert recorded.details["new_balance"] == "6"


class TestReviseDebt:
    """Tests for debt edits that move the balance."""

    async def test_balance_edit_is_a_ledger_entry(self, ledger, local_store):
        """Test that setting the balance records an adjustment that survives a rebuild."""
        debt = await ledger.open_debt(DebtCreate(name="Loan", principal=Decimal("1000")))

        revised = await ledger.revise_debt(debt.id, DebtUpdate(current_balance=Decimal("5")))

        assert revised.current_balance == Decimal("5")
        latest = (await local_store.list_transactions_for_debt(debt.id))[0]
        assert latest.type == TransactionType.PAYMENT
        assert latest.amount == Decimal("995")
        assert latest.notes == "Balance Adjustment"
        assert await ledger.rebuild_balance(debt.id) == Decimal("5")

    async def test_balance_increase_is_interest_free(self, ledger, local_store):
        """Test that raising the balance borrows without charging interest."""
        debt = await ledger.open_debt(
            DebtCreate(name="Card", principal=Decimal("100"), interest_rate=Decimal("24"))
        )

        revised = await ledger.revise_debt(debt.id, DebtUpdate(current_balance=Decimal("150")))

        assert revised.current_balance == Decimal("150")
        latest = (await local_store.list_transactions_for_debt(debt.id))[0]
        assert latest.type == TransactionType.BORROW
        assert latest.interest_amount == Decimal("0")
        assert await ledger.rebuild_balance(debt.id) == Decimal("150")

    async def test_principal_edit_shifts_balance(self, ledger, local_store):
        """Test that a new principal moves the balance by the same amount."""
        debt = await ledger.open_debt(DebtCreate(name="Loan", principal=Decimal("1000")))
        await ledger.record_transaction(
            TransactionCreate(debt_id=debt.id, type=TransactionType.PAYMENT, amount=Decimal("100"))
        )

        revised = await ledger.revise_debt(debt.id, DebtUpdate(principal=Decimal("1200")))

        assert revised.principal == Decimal("1200")
        assert revised.current_balance == Decimal("1100")
        assert await ledger.rebuild_balance(debt.id) == Decimal("1100")

    async def test_balance_edit_to_zero_pays_off(self, ledger):
        """Test that zeroing the balance marks the debt paid off."""
        debt = await ledger.open_debt(DebtCreate(name="Loan", principal=Decimal("40")))
        revised = await ledger.revise_debt(debt.id, DebtUpdate(current_balance=Decimal("0")))
        assert revised.status == DebtStatus.PAID_OFF

    async def test_plain_edit_adds_no_entry(self, ledger, local_store):
        """Test that renaming a debt leaves the ledger alone."""
        debt = await ledger.open_debt(DebtCreate(name="Loan", principal=Decimal("40")))
        revised = await ledger.revise_debt(debt.id, DebtUpdate(name="Car Loan"))
        assert revised.name == "Car Loan"
        assert len(await local_store.list_transactions_for_debt(debt.id)) == 1

    async def test_revise_missing_debt(self, ledger):
        """Test that editing an unknown debt raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await ledger.revise_debt("local_missing", DebtUpdate(name="x"))
