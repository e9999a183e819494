"""
Ledger Engine

Translates transaction intents into balance changes for a debt, and
reverses them when a transaction is deleted.

The engine functions are pure: they take a debt (or a balance and a
rate) and return numbers. They never raise. Out-of-range results are
clamped to zero, never rejected.

LedgerService wraps the engine with persistence against any record
store. Write ordering is the only consistency tool we have, because the
cloud tables offer no transactions:

    record:  write the Transaction  ->  then write the Debt balance
    delete:  delete the Transaction ->  then write the Debt balance

If the second write fails, the ledger still holds the truth and
rebuild_balance() re-derives the balance from it.
"""

from decimal import Decimal
from typing import Iterable, Optional

import structlog
from pydantic import BaseModel

from debt_mirror.audit import AuditLogger
from debt_mirror.models.audit import AuditEventType
from debt_mirror.models.entities import (
    Debt,
    DebtCreate,
    DebtStatus,
    DebtUpdate,
    Transaction,
    TransactionCreate,
    TransactionDraft,
    TransactionType,
)
from debt_mirror.models.mode import AccessMode
from debt_mirror.services.storage.interface import (
    NotFoundError,
    RecordStoreInterface,
    StorageError,
)


logger = structlog.get_logger(__name__)

ZERO = Decimal("0")
MONTHS_PER_YEAR = Decimal("12")
PERCENT = Decimal("100")

INITIAL_TRANSACTION_NOTE = "Initial Balance"
ADJUSTMENT_TRANSACTION_NOTE = "Balance Adjustment"


class BalanceChange(BaseModel):
    """Outcome of applying one transaction intent to a debt."""

    new_balance: Decimal
    interest_amount: Decimal


# =============================================================================
# ENGINE - pure functions
# =============================================================================

def monthly_interest(amount: Decimal, annual_rate_percent: Optional[Decimal]) -> Decimal:
    """
    One month of simple interest on amount.

    amount * (rate / 100) / 12, no compounding, no day count.
    """
    if not annual_rate_percent or annual_rate_percent <= 0:
        return ZERO
    return amount * (annual_rate_percent / PERCENT) / MONTHS_PER_YEAR


def apply_to_balance(
    balance: Decimal,
    annual_rate_percent: Optional[Decimal],
    transaction_type: TransactionType,
    amount: Decimal,
    explicit_interest: Optional[Decimal] = None,
) -> BalanceChange:
    """Apply one intent to a bare balance. See apply_transaction."""
    if transaction_type == TransactionType.INITIAL:
        return BalanceChange(new_balance=max(ZERO, amount), interest_amount=ZERO)

    if transaction_type == TransactionType.PAYMENT:
        return BalanceChange(new_balance=max(ZERO, balance - amount), interest_amount=ZERO)

    if explicit_interest is not None:
        interest = explicit_interest
    else:
        interest = monthly_interest(amount, annual_rate_percent)
    return BalanceChange(
        new_balance=max(ZERO, balance + amount + interest),
        interest_amount=interest,
    )


def apply_transaction(
    debt: Debt,
    transaction_type: TransactionType,
    amount: Decimal,
    explicit_interest: Optional[Decimal] = None,
) -> BalanceChange:
    """
    Compute the balance after one transaction.

    - payment: balance - amount, clamped to zero; never carries interest
    - borrow:  balance + amount + interest; interest is explicit_interest
               if given, else one month of simple interest at the debt's rate
    - initial: the amount itself; no interest
    """
    return apply_to_balance(
        debt.current_balance,
        debt.interest_rate,
        transaction_type,
        amount,
        explicit_interest,
    )


def reverse_transaction(debt: Debt, transaction: Transaction) -> Decimal:
    """
    Compute the balance after undoing one transaction.

    Reversing a payment adds it back. Reversing a borrow or the initial
    entry subtracts amount and interest, clamped to zero. When the
    original application was clamped, the reversal can't restore the
    exact prior balance.
    """
    if transaction.type == TransactionType.PAYMENT:
        return debt.current_balance + transaction.amount
    return max(
        ZERO,
        debt.current_balance - transaction.amount - transaction.interest_amount,
    )


def replay_balance(
    transactions: Iterable[Transaction],
    opening_balance: Decimal = ZERO,
) -> Decimal:
    """
    Fold the ledger, oldest first, into a balance.

    Each entry's stored interest_amount is used as its explicit
    interest, so a later change of rate never rewrites history.
    """
    balance = opening_balance
    for transaction in transactions:
        balance = apply_to_balance(
            balance,
            None,
            transaction.type,
            transaction.amount,
            transaction.interest_amount,
        ).new_balance
    return balance


def sync_debt_status(debt: Debt, new_balance: Decimal) -> DebtStatus:
    """A debt at zero is paid off; a paid-off debt that owes again is active."""
    if new_balance == ZERO:
        return DebtStatus.PAID_OFF
    if debt.status == DebtStatus.PAID_OFF:
        return DebtStatus.ACTIVE
    return debt.status


# =============================================================================
# SERVICE - engine plus persistence
# =============================================================================

class LedgerService:
    """
    Balance-affecting operations against one record store.

    Works identically for guest (LocalRecordStore) and authenticated
    (CloudRecordStore) mode.
    """

    def __init__(
        self,
        store: RecordStoreInterface,
        mode: AccessMode = AccessMode.GUEST,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._mode = mode
        self._audit_logger = audit_logger

    async def _require_debt(self, debt_id: str) -> Debt:
        debt = await self._store.get_debt(debt_id)
        if debt is None:
            raise NotFoundError(f"Debt not found: {debt_id}")
        return debt

    async def _write_balance(self, debt: Debt, new_balance: Decimal, operation: str) -> Debt:
        """
        Persist a debt's new balance and status.

        A failure here leaves the ledger ahead of the balance. It is
        logged and audited before propagating; rebuild_balance() repairs it.
        """
        try:
            return await self._store.update_debt(
                debt.id,
                DebtUpdate(
                    current_balance=new_balance,
                    status=sync_debt_status(debt, new_balance),
                ),
            )
        except StorageError as e:
            logger.error(
                "balance_write_failed",
                operation=operation,
                debt_id=debt.id,
                new_balance=str(new_balance),
                error=str(e),
            )
            if self._audit_logger:
                await self._audit_logger.log_storage_error(
                    operation=operation,
                    error_message=str(e),
                    details={"debt_id": debt.id, "new_balance": str(new_balance)},
                )
            raise

    async def open_debt(self, data: DebtCreate) -> Debt:
        """
        Create a debt together with its single initial ledger entry.

        If the initial entry can't be written the debt is removed again,
        so no debt ever exists without a ledger.
        """
        debt = await self._store.create_debt(data)
        starting_balance = debt.current_balance
        try:
            await self._store.create_transaction(
                TransactionDraft(
                    debt_id=debt.id,
                    type=TransactionType.INITIAL,
                    amount=starting_balance,
                    interest_amount=ZERO,
                    new_balance=starting_balance,
                    notes=INITIAL_TRANSACTION_NOTE,
                )
            )
        except StorageError:
            logger.error("initial_transaction_failed", debt_id=debt.id)
            await self._store.delete_debt(debt.id)
            raise

        if self._audit_logger:
            await self._audit_logger.log_record_changed(
                AuditEventType.DEBT_CREATED,
                entity_type="debt",
                entity_id=debt.id,
                mode=self._mode.value,
                details={"starting_balance": str(starting_balance)},
            )
        return debt

    async def record_transaction(self, intent: TransactionCreate) -> Transaction:
        """
        Append a borrow or payment and move the debt's balance.

        Raises:
            NotFoundError: If the debt doesn't exist
            ValueError: If the intent is an initial entry
        """
        if intent.type == TransactionType.INITIAL:
            raise ValueError("Initial entries are only written when a debt is opened")

        debt = await self._require_debt(intent.debt_id)
        change = apply_transaction(debt, intent.type, intent.amount, intent.interest_amount)

        transaction = await self._store.create_transaction(
            TransactionDraft(
                debt_id=debt.id,
                type=intent.type,
                amount=intent.amount,
                interest_amount=change.interest_amount,
                new_balance=change.new_balance,
                notes=intent.notes,
            )
        )
        await self._write_balance(debt, change.new_balance, "record_transaction")

        logger.info(
            "transaction_recorded",
            debt_id=debt.id,
            type=intent.type.value,
            amount=str(intent.amount),
            new_balance=str(change.new_balance),
        )
        if self._audit_logger:
            await self._audit_logger.log_transaction_recorded(
                transaction_id=transaction.id,
                debt_id=debt.id,
                transaction_type=intent.type.value,
                amount=str(intent.amount),
                new_balance=str(change.new_balance),
                mode=self._mode.value,
            )
        return transaction

    async def revise_debt(self, debt_id: str, updates: DebtUpdate) -> Debt:
        """
        Edit a debt, moving any balance change through the ledger.

        A new current_balance is the target balance. Without one, a new
        principal shifts the balance by the same amount. The difference
        is recorded as an interest-free borrow or a payment, so the
        edit survives rebuild_balance. Every other field is merged as is.

        Raises:
            NotFoundError: If the debt doesn't exist
        """
        debt = await self._require_debt(debt_id)
        changes = updates.changes()

        target = debt.current_balance
        if "current_balance" in changes:
            target = changes["current_balance"]
        elif "principal" in changes:
            target = max(ZERO, debt.current_balance + changes["principal"] - debt.principal)

        fields = {k: v for k, v in changes.items() if k != "current_balance"}
        if fields:
            debt = await self._store.update_debt(debt_id, DebtUpdate(**fields))

        delta = target - debt.current_balance
        if delta != ZERO:
            await self.record_transaction(
                TransactionCreate(
                    debt_id=debt_id,
                    type=TransactionType.BORROW if delta > ZERO else TransactionType.PAYMENT,
                    amount=abs(delta),
                    interest_amount=ZERO,
                    notes=ADJUSTMENT_TRANSACTION_NOTE,
                )
            )
            debt = await self._require_debt(debt_id)
        return debt

    async def delete_transaction(self, transaction_id: str) -> Decimal:
        """
        Delete a transaction and reverse its effect on the debt.

        Returns:
            The debt's new balance

        Raises:
            NotFoundError: If the transaction or its debt doesn't exist
        """
        transaction = await self._store.get_transaction(transaction_id)
        if transaction is None:
            raise NotFoundError(f"Transaction not found: {transaction_id}")
        debt = await self._require_debt(transaction.debt_id)

        new_balance = reverse_transaction(debt, transaction)
        await self._store.delete_transaction(transaction_id)
        await self._write_balance(debt, new_balance, "delete_transaction")

        logger.info(
            "transaction_reversed",
            transaction_id=transaction_id,
            debt_id=debt.id,
            new_balance=str(new_balance),
        )
        if self._audit_logger:
            await self._audit_logger.log_transaction_deleted(
                transaction_id=transaction_id,
                debt_id=debt.id,
                new_balance=str(new_balance),
                mode=self._mode.value,
            )
        return new_balance

    async def rebuild_balance(self, debt_id: str) -> Decimal:
        """
        Re-derive a debt's balance from its ledger and persist it.

        Used to recover after a balance write failed behind an already
        durable transaction write.
        """
        debt = await self._require_debt(debt_id)
        newest_first = await self._store.list_transactions_for_debt(debt_id)
        new_balance = replay_balance(reversed(newest_first), opening_balance=debt.principal)

        if new_balance != debt.current_balance:
            await self._write_balance(debt, new_balance, "rebuild_balance")
            logger.warning(
                "balance_rebuilt",
                debt_id=debt_id,
                previous_balance=str(debt.current_balance),
                new_balance=str(new_balance),
            )
        if self._audit_logger:
            await self._audit_logger.log_balance_rebuilt(
                debt_id=debt_id,
                previous_balance=str(debt.current_balance),
                new_balance=str(new_balance),
                mode=self._mode.value,
            )
        return new_balance
