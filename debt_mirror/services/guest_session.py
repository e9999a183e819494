"""
Guest Session Manager

Owns the lifecycle of the time-boxed anonymous session:

    NONE --start()--> ACTIVE --(time passes)--> EXPIRED
    ACTIVE | EXPIRED --end()--> NONE

CRITICAL: Expiry is never cached and never driven by a timer. Every
check re-reads the session and compares expires_at with the clock, so a
process restart or a suspended device can't leave a stale "valid" flag
behind. An expired session is never revived; it must be ended and a new
one started.
"""

import math
from datetime import datetime, timedelta
from typing import Optional

import structlog
from dateutil.relativedelta import relativedelta

from debt_mirror.audit import AuditLogger
from debt_mirror.models.entities import GuestSession
from debt_mirror.services.clock import Clock, utc_now
from debt_mirror.services.local_store import LocalRecordStore, generate_local_id
from debt_mirror.services.storage.interface import NotFoundError


logger = structlog.get_logger(__name__)

SECONDS_PER_DAY = timedelta(days=1).total_seconds()


class ExpiredSessionError(Exception):
    """An operation was attempted against an expired guest session."""

    def __init__(self, session_id: str, expired_at: datetime):
        self.session_id = session_id
        self.expired_at = expired_at
        super().__init__(f"Guest session {session_id} expired at {expired_at.isoformat()}")


def session_expired(session: Optional[GuestSession], now: datetime) -> bool:
    """True if there is no session or now is past its expiry."""
    if session is None:
        return True
    return now > session.expires_at


def days_until(session: Optional[GuestSession], now: datetime) -> int:
    """Whole days left, rounded up, never negative."""
    if session is None:
        return 0
    remaining = (session.expires_at - now).total_seconds() / SECONDS_PER_DAY
    return max(0, math.ceil(remaining))


class GuestSessionManager:
    """
    Start, inspect and end the guest session.

    The session record and the guest collections share one key-value
    namespace owned by the LocalRecordStore.
    """

    def __init__(
        self,
        store: LocalRecordStore,
        duration_months: int = 2,
        clock: Clock = utc_now,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._duration = relativedelta(months=duration_months)
        self._clock = clock
        self._audit_logger = audit_logger

    async def start(self) -> GuestSession:
        """
        Create a session that expires duration_months from now.

        An active session is returned unchanged. An expired one is
        cleared, with its data, before the new session is written.

        Raises:
            StorageError: If the session cannot be written
        """
        now = self._clock()
        existing = await self._store.read_session()
        if existing is not None:
            if not session_expired(existing, now):
                return existing
            await self.end(reason="expired")
        else:
            # A new session always starts with an empty namespace
            await self._store.clear_all()

        session = GuestSession(
            id=generate_local_id(),
            started_at=now,
            expires_at=now + self._duration,
        )
        await self._store.write_session(session)

        logger.info(
            "guest_session_created",
            session_id=session.id,
            expires_at=session.expires_at.isoformat(),
        )
        if self._audit_logger:
            await self._audit_logger.log_session_started(session.id, session.expires_at)
        return session

    async def get(self) -> Optional[GuestSession]:
        """Return the persisted session, even if it has expired."""
        return await self._store.read_session()

    async def is_expired(self) -> bool:
        return session_expired(await self._store.read_session(), self._clock())

    async def days_remaining(self) -> int:
        return days_until(await self._store.read_session(), self._clock())

    async def require_active(self) -> GuestSession:
        """
        Return the session if it is usable right now.

        Raises:
            NotFoundError: If there is no session
            ExpiredSessionError: If the session has expired
        """
        session = await self._store.read_session()
        if session is None:
            raise NotFoundError("No guest session")
        if session_expired(session, self._clock()):
            raise ExpiredSessionError(session.id, session.expires_at)
        return session

    async def end(self, reason: str = "explicit") -> None:
        """
        Delete the session and every guest record.

        The record store removes the session key last, so a failure
        partway through never leaves a session pointing at missing data.
        """
        session = await self._store.read_session()
        await self._store.clear_all()

        logger.info("guest_session_ended", reason=reason)
        if self._audit_logger:
            session_id = session.id if session else None
            if reason == "expired" and session is not None:
                await self._audit_logger.log_session_expired(session.id, session.expires_at)
            else:
                await self._audit_logger.log_session_ended(session_id, reason)
