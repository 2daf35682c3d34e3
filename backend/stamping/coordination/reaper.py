"""
Stale-state reaper.

Recovers from workers that died (or hung) while holding a lock:
  - IN_PROGRESS attempts older than the lock timeout become EXPIRED
  - lock fields older than the lock timeout are cleared on documents
    that are not SUBMITTED

Both happen in one transaction, so a sweep never leaves an expired
attempt next to a lock that still blocks acquisition.  Running it
repeatedly is safe: a second sweep over the same state changes nothing.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from stamping.core.config import Settings
from stamping.core.logging import get_logger
from stamping.coordination.lock import Clock
from stamping.db.models.base import utcnow
from stamping.db.session import SessionFactory, session_scope
from stamping.repositories import attempts as attempt_repo
from stamping.repositories import documents as document_repo

logger = get_logger(__name__)


@dataclass(frozen=True)
class SweepResult:
    expired_attempts: int
    orphaned_locks: int
    swept_at: datetime

    @property
    def changed(self) -> bool:
        return bool(self.expired_attempts or self.orphaned_locks)

    def to_dict(self) -> dict:
        return {
            "expired_attempts": self.expired_attempts,
            "orphaned_locks": self.orphaned_locks,
            "swept_at": self.swept_at.isoformat(),
        }


class StaleStateReaper:
    """Periodic sweep over abandoned attempts and locks."""

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        lock_timeout: timedelta = timedelta(minutes=5),
        clock: Clock = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self.lock_timeout = lock_timeout
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        session_factory: SessionFactory,
        settings: Settings,
        *,
        clock: Clock = utcnow,
    ) -> "StaleStateReaper":
        return cls(
            session_factory,
            lock_timeout=timedelta(seconds=settings.LOCK_TIMEOUT_SECONDS),
            clock=clock,
        )

    async def sweep(self) -> SweepResult:
        now = self._clock()
        cutoff = now - self.lock_timeout

        async with session_scope(self._session_factory) as db:
            expired = await attempt_repo.expire_stale(db, cutoff=cutoff, now=now)
            orphaned = await document_repo.clear_stale_locks(db, cutoff=cutoff)

        result = SweepResult(expired_attempts=expired, orphaned_locks=orphaned, swept_at=now)
        log = logger.info if result.changed else logger.debug
        log(
            "Stale state swept",
            expired_attempts=expired,
            orphaned_locks=orphaned,
            cutoff=cutoff.isoformat(),
            outcome="CHANGED" if result.changed else "NOOP",
        )
        return result
