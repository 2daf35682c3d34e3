"""
LockCoordinator — exclusive, time-bounded submission rights per document.

Both operations run as a single transaction against the same store as
the attempt ledger.  The document row is locked first (SELECT ... FOR
UPDATE on PostgreSQL, BEGIN IMMEDIATE on SQLite), so every
read-decide-write cycle sees current state and concurrent workers are
serialized per document.

acquire():
    1. document SUBMITTED              → LockRejected(ALREADY_SUBMITTED)
    2. document CANCELLED              → LockRejected(CANCELLED)
    3. fresh IN_PROGRESS attempt       → LockRejected(IN_PROGRESS)
    4. fresh lock fields on document   → LockRejected(LOCKED)
    5. otherwise expire the stale IN_PROGRESS attempts, stamp lock,
       upsert attempt IN_PROGRESS → LockAcquired

release():
    Transitions the attempt to SUCCESS or FAILED (never EXPIRED, that is
    done by the reaper and by a takeover), applies the document-level
    effect of the outcome and clears the lock.  A release from a worker
    whose attempt expired or was reclaimed in the meantime is a late
    completion, see `_release()`.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from stamping.core.config import Settings
from stamping.core.constants import AttemptStatus, DocumentStatus, ErrorKind, RejectReason
from stamping.core.logging import get_logger
from stamping.coordination.errors import AttemptNotFoundError, DocumentNotFoundError
from stamping.coordination.idempotency import generate_idempotency_key
from stamping.db.models.base import utcnow
from stamping.db.session import SessionFactory, session_scope
from stamping.repositories import attempts as attempt_repo
from stamping.repositories import documents as document_repo

logger = get_logger(__name__)

Clock = Callable[[], datetime]


# ═══════════════════════════════════════════════════════════
#  Results
# ═══════════════════════════════════════════════════════════

@dataclass(frozen=True)
class LockAcquired:
    """The caller now holds the document's submission lock."""

    document_id: str
    attempt_id: str
    idempotency_key: str
    worker_id: str
    acquired_at: datetime
    attempt_count: int = 1
    unknown_error_count: int = 0

    acquired = True


@dataclass(frozen=True)
class LockRejected:
    """Acquisition refused. A control signal, not an error."""

    document_id: str
    reason: RejectReason
    external_reference: str | None = None
    lock_owner: str | None = None
    existing_attempt_id: str | None = None

    acquired = False


AcquireResult = LockAcquired | LockRejected


@dataclass(frozen=True)
class AttemptOutcome:
    """What happened to the provider call, as reported to `release()`."""

    worker_id: str
    success: bool
    external_reference: str | None = None
    stamped_at: datetime | None = None
    provider_metadata: dict[str, Any] = field(default_factory=dict)
    provider_response: dict[str, Any] = field(default_factory=dict)
    error_kind: ErrorKind | None = None
    error_message: str | None = None
    # Permanent failure: the document moves to ERROR.
    terminal: bool = False

    @classmethod
    def succeeded(
        cls,
        worker_id: str,
        *,
        external_reference: str,
        stamped_at: datetime | None = None,
        provider_metadata: dict[str, Any] | None = None,
    ) -> "AttemptOutcome":
        return cls(
            worker_id=worker_id,
            success=True,
            external_reference=external_reference,
            stamped_at=stamped_at,
            provider_metadata=provider_metadata or {},
            provider_response=provider_metadata or {},
        )

    @classmethod
    def failed(
        cls,
        worker_id: str,
        *,
        error_kind: ErrorKind,
        error_message: str,
        terminal: bool,
        provider_response: dict[str, Any] | None = None,
    ) -> "AttemptOutcome":
        return cls(
            worker_id=worker_id,
            success=False,
            error_kind=error_kind,
            error_message=error_message,
            terminal=terminal,
            provider_response=provider_response or {},
        )


@dataclass(frozen=True)
class ReleaseResult:
    """Document state after a release."""

    document_id: str
    attempt_id: str
    document_status: str
    external_reference: str | None = None
    # False when a late failure did not reach the document.
    applied: bool = True
    # True when a success landed on a document someone else had moved on.
    reconciled: bool = False


# ═══════════════════════════════════════════════════════════
#  Coordinator
# ═══════════════════════════════════════════════════════════

class LockCoordinator:
    """
    Grants one worker at a time the right to submit a document.

    Usage::

        coordinator = LockCoordinator(session_factory, lock_timeout=timedelta(minutes=5))
        result = await coordinator.acquire(document_id, 1, worker_id="host:1234:task-1")
        if result.acquired:
            ...
            await coordinator.release(document_id, result.attempt_id, outcome)
    """

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
    ) -> "LockCoordinator":
        return cls(
            session_factory,
            lock_timeout=timedelta(seconds=settings.LOCK_TIMEOUT_SECONDS),
            clock=clock,
        )

    # ─── acquire ──────────────────────────────────────

    async def acquire(
        self,
        document_id: uuid.UUID | str,
        content_version: int,
        worker_id: str,
        *,
        context: dict[str, Any] | None = None,
    ) -> AcquireResult:
        """Try to take the submission lock for one (document, version) pair."""
        now = self._clock()
        fresh_after = now - self.lock_timeout
        idempotency_key = generate_idempotency_key(document_id, content_version, context)
        doc_id = str(document_id)

        async with session_scope(self._session_factory) as db:
            document = await document_repo.get_document_for_update(db, document_id)
            if document is None:
                raise DocumentNotFoundError(f"Document {doc_id} not found", document_id=doc_id)

            result: AcquireResult
            if document.status == DocumentStatus.SUBMITTED:
                result = LockRejected(
                    document_id=doc_id,
                    reason=RejectReason.ALREADY_SUBMITTED,
                    external_reference=document.external_reference,
                )
            elif document.status == DocumentStatus.CANCELLED:
                result = LockRejected(document_id=doc_id, reason=RejectReason.CANCELLED)
            else:
                in_progress = await attempt_repo.find_fresh_in_progress(
                    db, document_id, started_after=fresh_after
                )
                if in_progress is not None:
                    result = LockRejected(
                        document_id=doc_id,
                        reason=RejectReason.IN_PROGRESS,
                        lock_owner=in_progress.worker_id,
                        existing_attempt_id=str(in_progress.id),
                    )
                elif (
                    document.lock_owner is not None
                    and document.lock_acquired_at is not None
                    and document.lock_acquired_at > fresh_after
                ):
                    result = LockRejected(
                        document_id=doc_id,
                        reason=RejectReason.LOCKED,
                        lock_owner=document.lock_owner,
                    )
                else:
                    # Nothing fresh is left: retire whatever the previous holder
                    # left IN_PROGRESS, under any content version.
                    superseded = await attempt_repo.expire_stale(
                        db, cutoff=now, now=now, document_id=document_id
                    )
                    if superseded:
                        logger.warning(
                            "Stale attempts expired on takeover",
                            document_id=doc_id,
                            worker_id=worker_id,
                            expired_attempts=superseded,
                            previous_owner=document.lock_owner,
                        )
                    await document_repo.stamp_lock(db, document, worker_id=worker_id, now=now)
                    if document.status == DocumentStatus.ERROR:
                        await document_repo.reopen_for_retry(db, document)
                    attempt = await attempt_repo.upsert_in_progress(
                        db,
                        document_id=document_id,
                        content_version=content_version,
                        idempotency_key=idempotency_key,
                        worker_id=worker_id,
                        now=now,
                        context=context,
                    )
                    result = LockAcquired(
                        document_id=doc_id,
                        attempt_id=str(attempt.id),
                        idempotency_key=idempotency_key,
                        worker_id=worker_id,
                        acquired_at=now,
                        attempt_count=attempt.attempt_count,
                        unknown_error_count=attempt.unknown_error_count or 0,
                    )

        if result.acquired:
            logger.info(
                "Lock acquired",
                document_id=doc_id,
                worker_id=worker_id,
                attempt_id=result.attempt_id,
                attempt_count=result.attempt_count,
                outcome="ACQUIRED",
            )
        else:
            logger.info(
                "Lock rejected",
                document_id=doc_id,
                worker_id=worker_id,
                outcome=result.reason.value,
                lock_owner=result.lock_owner,
            )
        return result

    # ─── release ──────────────────────────────────────

    async def release(
        self,
        document_id: uuid.UUID | str,
        attempt_id: uuid.UUID | str,
        outcome: AttemptOutcome,
    ) -> ReleaseResult:
        """Record the outcome of the provider call and give the lock back."""
        now = self._clock()
        async with session_scope(self._session_factory) as db:
            result = await self._release(db, document_id, attempt_id, outcome, now)

        logger.info(
            "Lock released",
            document_id=result.document_id,
            worker_id=outcome.worker_id,
            attempt_id=result.attempt_id,
            outcome="SUCCESS" if outcome.success else "FAILED",
            error_kind=outcome.error_kind.value if outcome.error_kind else None,
            document_status=result.document_status,
            applied=result.applied,
            reconciled=result.reconciled,
        )
        return result

    async def _release(
        self,
        db: AsyncSession,
        document_id: uuid.UUID | str,
        attempt_id: uuid.UUID | str,
        outcome: AttemptOutcome,
        now: datetime,
    ) -> ReleaseResult:
        doc_id = str(document_id)
        document = await document_repo.get_document_for_update(db, document_id)
        if document is None:
            raise DocumentNotFoundError(f"Document {doc_id} not found", document_id=doc_id)
        attempt = await attempt_repo.get_attempt(db, attempt_id)
        if attempt is None:
            raise AttemptNotFoundError(f"Attempt {attempt_id} not found", document_id=doc_id)

        # The caller recorded this attempt, unless another worker revived it
        # after a takeover or another outcome was already recorded.
        owns_attempt = (
            attempt.worker_id == outcome.worker_id
            and attempt.status in (AttemptStatus.IN_PROGRESS, AttemptStatus.EXPIRED)
        )
        # Only a still-running attempt speaks for the document.
        live = owns_attempt and attempt.status == AttemptStatus.IN_PROGRESS
        applied = True
        reconciled = False

        if outcome.success:
            if document.status == DocumentStatus.SUBMITTED:
                # Already submitted by someone else: keep the stored reference.
                reconciled = document.external_reference != outcome.external_reference
                if owns_attempt:
                    await attempt_repo.mark_failed(
                        db,
                        attempt,
                        now=now,
                        error_kind=ErrorKind.DUPLICATE.value,
                        error_message=(
                            f"Provider accepted reference {outcome.external_reference} but the "
                            f"document was already submitted as {document.external_reference}"
                        ),
                        provider_response=outcome.provider_response,
                    )
                else:
                    applied = False
            else:
                reconciled = not live or document.status != DocumentStatus.PENDING
                if reconciled:
                    logger.warning(
                        "Late provider success reconciled",
                        document_id=doc_id,
                        worker_id=outcome.worker_id,
                        previous_status=document.status,
                        attempt_status=attempt.status,
                    )
                await document_repo.mark_submitted(
                    db,
                    document,
                    external_reference=outcome.external_reference or "",
                    submitted_at=outcome.stamped_at or now,
                    provider_metadata=outcome.provider_metadata,
                )
                await attempt_repo.mark_success(
                    db,
                    attempt,
                    worker_id=outcome.worker_id,
                    now=now,
                    provider_response=outcome.provider_response,
                )
        elif owns_attempt:
            kind = outcome.error_kind or ErrorKind.UNKNOWN
            await attempt_repo.mark_failed(
                db,
                attempt,
                now=now,
                error_kind=kind.value,
                error_message=outcome.error_message or "",
                provider_response=outcome.provider_response,
                count_unknown=kind == ErrorKind.UNKNOWN,
            )
            if not live:
                # Expired under us: the diagnostics stay on the attempt only.
                applied = False
                logger.warning(
                    "Late failure recorded on expired attempt",
                    document_id=doc_id,
                    worker_id=outcome.worker_id,
                    lock_owner=document.lock_owner,
                    error_kind=kind.value,
                )
            elif outcome.terminal:
                await document_repo.mark_error(
                    db,
                    document,
                    error_kind=kind.value,
                    error_message=outcome.error_message or "",
                )
        else:
            applied = False
            logger.warning(
                "Late failure ignored",
                document_id=doc_id,
                worker_id=outcome.worker_id,
                attempt_owner=attempt.worker_id,
                attempt_status=attempt.status,
            )

        # A submitted document never keeps a lock.
        if (
            live
            or document.lock_owner == outcome.worker_id
            or document.status == DocumentStatus.SUBMITTED
        ):
            await document_repo.clear_lock(db, document)

        return ReleaseResult(
            document_id=doc_id,
            attempt_id=str(attempt.id),
            document_status=document.status,
            external_reference=document.external_reference,
            applied=applied,
            reconciled=reconciled,
        )
