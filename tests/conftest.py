"""Pytest configuration and fixtures."""

from datetime import datetime, timedelta, timezone

import pytest

from debt_mirror.audit import AuditLogger
from debt_mirror.orchestrator import ModeController
from debt_mirror.services.guest_session import GuestSessionManager
from debt_mirror.services.identity import LocalIdentityProvider
from debt_mirror.services.ledger import LedgerService
from debt_mirror.services.local_store import LocalRecordStore
from debt_mirror.services.migration import MigrationCoordinator
from debt_mirror.services.storage import (
    InMemoryAuditStorage,
    InMemoryKeyValueStore,
    InMemoryTableStore,
)


# 2024 is a leap year: two months from Jan 1 is exactly 60 days
T0 = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)


class FixedClock:
    """A clock that only moves when told to."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def kv():
    return InMemoryKeyValueStore()


@pytest.fixture
def local_store(kv, clock):
    return LocalRecordStore(kv, clock=clock)


@pytest.fixture
def remote():
    return InMemoryTableStore()


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage):
    return AuditLogger(audit_storage)


@pytest.fixture
def session_manager(local_store, clock, audit_logger):
    return GuestSessionManager(local_store, clock=clock, audit_logger=audit_logger)


@pytest.fixture
def ledger(local_store, audit_logger):
    return LedgerService(local_store, audit_logger=audit_logger)


@pytest.fixture
def migration(local_store, remote, audit_logger, clock):
    return MigrationCoordinator(local_store, remote, audit_logger, clock=clock)


@pytest.fixture
def identity():
    return LocalIdentityProvider()


@pytest.fixture
def controller(local_store, session_manager, remote, identity, migration, audit_logger, clock):
    controller = ModeController(
        local_store=local_store,
        session_manager=session_manager,
        remote=remote,
        identity=identity,
        migration=migration,
        audit_logger=audit_logger,
        clock=clock,
    )
    controller.attach()
    yield controller
    controller.detach()
