"""
Mode Controller for Debt Mirror

This module ties together the guest and account halves of the data
layer and defines the mode transitions:

    UNAUTHENTICATED --start_guest()------------> GUEST
    GUEST           --sign-in (migrate once)----> AUTHENTICATED
    GUEST           --session expires (lazy)----> UNAUTHENTICATED
    GUEST           --end_guest()---------------> UNAUTHENTICATED
    AUTHENTICATED   --sign-out-----------------> UNAUTHENTICATED

DESIGN DECISION: The controller holds no "current mode" field. Every
call re-derives a Mode from the identity provider and the persisted
guest session, then routes to the record store that Mode selects.
A restart, an expiry or a sign-in elsewhere can therefore never leave
a stale mode behind.

Every CRUD call goes to the Local Record Store in GUEST mode and to the
Cloud Record Store in AUTHENTICATED mode. Nothing is valid while
UNAUTHENTICATED.
"""

import asyncio
from decimal import Decimal
from typing import Optional

import structlog
from pydantic import ValidationError

from debt_mirror.audit import AuditLogger
from debt_mirror.config import get_settings
from debt_mirror.config.settings import Settings
from debt_mirror.models.audit import AuditEventType
from debt_mirror.models.entities import (
    Debt,
    DebtCreate,
    DebtUpdate,
    IncomeCreate,
    IncomeSource,
    IncomeUpdate,
    Transaction,
    TransactionCreate,
)
from debt_mirror.models.mode import AccessMode, Mode
from debt_mirror.queries import SummaryQueries
from debt_mirror.services.clock import Clock, utc_now
from debt_mirror.services.cloud_store import CloudRecordStore
from debt_mirror.services.guest_session import ExpiredSessionError, GuestSessionManager
from debt_mirror.services.identity import (
    AuthEvent,
    AuthEventKind,
    IdentityProviderInterface,
    LocalIdentityProvider,
    Unsubscribe,
)
from debt_mirror.services.ledger import LedgerService
from debt_mirror.services.local_store import LocalRecordStore
from debt_mirror.services.migration import MigrationCoordinator, MigrationResult
from debt_mirror.services.storage import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsTableStore,
    InMemoryTableStore,
    NotFoundError,
    RecordStoreInterface,
    RemoteTableInterface,
    SQLiteKeyValueStore,
    StorageError,
)


logger = structlog.get_logger(__name__)


class UnauthenticatedError(Exception):
    """A data operation was attempted with neither a guest session nor an account."""
    pass


class ModeController:
    """
    Routes data operations to the store of the active identity.

    Usage:
        controller = create_app_components()
        controller.attach()
        await controller.initialize()
        await controller.start_guest()
        debt = await controller.create_debt(DebtCreate(name="Visa", principal=500))
    """

    def __init__(
        self,
        local_store: LocalRecordStore,
        session_manager: GuestSessionManager,
        remote: RemoteTableInterface,
        identity: IdentityProviderInterface,
        migration: MigrationCoordinator,
        audit_logger: Optional[AuditLogger] = None,
        clock: Clock = utc_now,
    ):
        self._local = local_store
        self._sessions = session_manager
        self._remote = remote
        self._identity = identity
        self._migration = migration
        self._audit_logger = audit_logger
        self._clock = clock
        self._migration_lock = asyncio.Lock()
        self._unsubscribe: Optional[Unsubscribe] = None

    # -------------------------------------------------------------------------
    # Mode resolution
    # -------------------------------------------------------------------------

    async def resolve_mode(self) -> Mode:
        """
        Derive the active mode from scratch.

        An account always wins over a guest session. An expired session
        is cleared here, with its data, and reads as UNAUTHENTICATED.
        """
        user_id = self._identity.current_user_id()
        if user_id:
            return Mode.authenticated(user_id)

        try:
            session = await self._sessions.require_active()
        except NotFoundError:
            return Mode.unauthenticated()
        except ExpiredSessionError as e:
            logger.info("guest_session_expired", session_id=e.session_id)
            await self._sessions.end(reason="expired")
            return Mode.unauthenticated()
        return Mode.guest(session)

    def store_for(self, mode: Mode) -> RecordStoreInterface:
        """
        The record store a mode reads and writes.

        Raises:
            UnauthenticatedError: For UNAUTHENTICATED
        """
        if mode.is_authenticated:
            return CloudRecordStore(self._remote, mode.user_id, clock=self._clock)
        if mode.is_guest:
            return self._local
        raise UnauthenticatedError("Start a guest session or sign in first")

    def ledger_for(self, mode: Mode) -> LedgerService:
        return LedgerService(self.store_for(mode), mode.kind, self._audit_logger)

    async def _active(self) -> tuple[Mode, RecordStoreInterface]:
        mode = await self.resolve_mode()
        store = self.store_for(mode)
        if mode.is_guest:
            # Expiry may have passed since the mode was resolved
            await self._sessions.require_active()
        return mode, store

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    async def start_guest(self) -> Mode:
        """
        Enter guest mode.

        Raises:
            ValueError: If an account is already signed in
            StorageError: If the session cannot be written
        """
        if self._identity.current_user_id():
            raise ValueError("Cannot start a guest session while signed in")
        session = await self._sessions.start()
        return Mode.guest(session)

    async def end_guest(self) -> Mode:
        """Leave guest mode and delete every guest record."""
        await self._sessions.end(reason="explicit")
        return Mode.unauthenticated()

    async def sign_out(self) -> Mode:
        await self._identity.sign_out()
        if self._unsubscribe is None:
            # Not listening, so the provider's event never reaches us
            await self.handle_auth_event(AuthEvent(kind=AuthEventKind.SIGNED_OUT))
        return await self.resolve_mode()

    async def handle_auth_event(self, event: AuthEvent) -> Optional[MigrationResult]:
        """
        React to a sign-in or sign-out.

        A sign-in while a guest session exists runs the migration.

        Returns:
            The migration result, or None if no migration ran
        """
        if event.kind == AuthEventKind.SIGNED_OUT:
            logger.info("signed_out", user_id=event.user_id)
            if self._audit_logger:
                await self._audit_logger.log_signed_out(event.user_id)
            return None

        logger.info("signed_in", user_id=event.user_id)
        if self._audit_logger:
            await self._audit_logger.log_signed_in(event.user_id)
        return await self.migrate_guest_data(event.user_id)

    async def migrate_guest_data(self, user_id: str) -> Optional[MigrationResult]:
        """
        Migrate the guest session's records to user_id, if there is one.

        An expired session is cleared instead of migrated. Concurrent
        calls are serialized; the later one finds the session gone.
        """
        async with self._migration_lock:
            session = await self._sessions.get()
            if session is None:
                return None
            if await self._sessions.is_expired():
                await self._sessions.end(reason="expired")
                return None

            result = await self._migration.migrate(user_id)
            if not result.success:
                logger.error("guest_data_kept_for_retry", user_id=user_id, error=result.error)
            return result

    async def _on_auth_event(self, event: AuthEvent) -> None:
        await self.handle_auth_event(event)

    def attach(self) -> None:
        """Subscribe to the identity provider's auth events."""
        if self._unsubscribe is None:
            self._unsubscribe = self._identity.subscribe(self._on_auth_event)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def initialize(self) -> Mode:
        """
        Settle state at startup.

        A signed-in account with a guest session left over from a
        previous run gets its migration now.
        """
        user_id = self._identity.current_user_id()
        if user_id:
            await self.migrate_guest_data(user_id)
        return await self.resolve_mode()

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    async def guest_days_remaining(self) -> int:
        mode = await self.resolve_mode()
        if not mode.is_guest:
            return 0
        return await self._sessions.days_remaining()

    async def is_onboarded(self) -> bool:
        """True once the active identity has at least one income source."""
        mode = await self.resolve_mode()
        if mode.kind == AccessMode.UNAUTHENTICATED:
            return False
        return bool(await self.store_for(mode).list_income())

    async def guest_display_name(self) -> Optional[str]:
        return await self._local.get_display_name()

    async def set_guest_display_name(self, name: str) -> None:
        mode, _ = await self._active()
        if not mode.is_guest:
            raise ValueError("Display names are only kept for guests")
        await self._local.set_display_name(name)

    async def summaries(self) -> SummaryQueries:
        _, store = await self._active()
        return SummaryQueries(store)

    # -------------------------------------------------------------------------
    # Debts
    # -------------------------------------------------------------------------

    async def list_debts(self) -> list[Debt]:
        _, store = await self._active()
        return await store.list_debts()

    async def get_debt(self, debt_id: str) -> Optional[Debt]:
        _, store = await self._active()
        return await store.get_debt(debt_id)

    async def create_debt(self, data: DebtCreate) -> Debt:
        """Open a debt along with its initial ledger entry."""
        mode, _ = await self._active()
        return await self.ledger_for(mode).open_debt(data)

    async def update_debt(self, debt_id: str, updates: DebtUpdate) -> Debt:
        """Edit a debt. Balance and principal edits land as ledger entries."""
        mode, _ = await self._active()
        debt = await self.ledger_for(mode).revise_debt(debt_id, updates)
        await self._audit_change(
            AuditEventType.DEBT_UPDATED,
            "debt",
            debt_id,
            mode,
            {"fields": sorted(updates.changes())},
        )
        return debt

    async def delete_debt(self, debt_id: str) -> bool:
        mode, store = await self._active()
        deleted = await store.delete_debt(debt_id)
        if deleted:
            await self._audit_change(AuditEventType.DEBT_DELETED, "debt", debt_id, mode)
        return deleted

    # -------------------------------------------------------------------------
    # Income
    # -------------------------------------------------------------------------

    async def list_income(self) -> list[IncomeSource]:
        _, store = await self._active()
        return await store.list_income()

    async def create_income(self, data: IncomeCreate) -> IncomeSource:
        mode, store = await self._active()
        income = await store.create_income(data)
        await self._audit_change(AuditEventType.INCOME_CREATED, "income", income.id, mode)
        return income

    async def update_income(self, income_id: str, updates: IncomeUpdate) -> IncomeSource:
        mode, store = await self._active()
        income = await store.update_income(income_id, updates)
        await self._audit_change(
            AuditEventType.INCOME_UPDATED,
            "income",
            income_id,
            mode,
            {"fields": sorted(updates.changes())},
        )
        return income

    async def delete_income(self, income_id: str) -> bool:
        mode, store = await self._active()
        deleted = await store.delete_income(income_id)
        if deleted:
            await self._audit_change(AuditEventType.INCOME_DELETED, "income", income_id, mode)
        return deleted

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    async def list_transactions(self, debt_id: Optional[str] = None) -> list[Transaction]:
        """All transactions oldest first, or one debt's newest first."""
        _, store = await self._active()
        if debt_id is None:
            return await store.list_transactions()
        return await store.list_transactions_for_debt(debt_id)

    async def add_transaction(self, intent: TransactionCreate) -> Transaction:
        mode, _ = await self._active()
        return await self.ledger_for(mode).record_transaction(intent)

    async def delete_transaction(self, transaction_id: str) -> Decimal:
        mode, _ = await self._active()
        return await self.ledger_for(mode).delete_transaction(transaction_id)

    async def rebuild_balance(self, debt_id: str) -> Decimal:
        mode, _ = await self._active()
        return await self.ledger_for(mode).rebuild_balance(debt_id)

    async def _audit_change(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        mode: Mode,
        details: Optional[dict] = None,
    ) -> None:
        if self._audit_logger:
            await self._audit_logger.log_record_changed(
                event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                mode=mode.kind.value,
                details=details,
            )


def create_app_components(
    use_remote: bool = True,
    identity: Optional[IdentityProviderInterface] = None,
    settings: Optional[Settings] = None,
    clock: Clock = utc_now,
) -> ModeController:
    """
    Factory function to create all application components.

    Args:
        use_remote: Whether to initialize Google Sheets for accounts.
                    Set to False to keep account data in memory.
        identity: Identity provider to follow. Defaults to a
                  LocalIdentityProvider with nobody signed in.

    Returns:
        A ModeController wired to on-device and cloud storage
    """
    settings = settings or get_settings()

    kv = SQLiteKeyValueStore(settings.local_storage.database_path)
    local_store = LocalRecordStore(kv, key_prefix=settings.local_storage.key_prefix, clock=clock)

    remote: RemoteTableInterface
    if use_remote:
        try:
            sheets_client = GoogleSheetsClient(settings.google_sheets)
            remote = GoogleSheetsTableStore(sheets_client)
            audit_logger = AuditLogger(GoogleSheetsAuditStorage(sheets_client))
        except (ValidationError, StorageError) as e:
            # Cloud not configured - accounts live in memory for this run
            logger.warning("remote_storage_not_configured", error=str(e))
            remote = InMemoryTableStore()
            audit_logger = AuditLogger()  # Local-only logging
    else:
        remote = InMemoryTableStore()
        audit_logger = AuditLogger()  # Local-only logging

    session_manager = GuestSessionManager(
        local_store,
        duration_months=settings.guest_session.duration_months,
        clock=clock,
        audit_logger=audit_logger,
    )
    migration = MigrationCoordinator(local_store, remote, audit_logger, clock=clock)

    return ModeController(
        local_store=local_store,
        session_manager=session_manager,
        remote=remote,
        identity=identity or LocalIdentityProvider(),
        migration=migration,
        audit_logger=audit_logger,
        clock=clock,
    )
