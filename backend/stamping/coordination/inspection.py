"""
Read-only views over documents and the attempt ledger.

Used by operators and by callers that want to know whether a submission
would be accepted before enqueuing one.  Nothing here takes the document
lock or writes.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from stamping.core.constants import AttemptStatus, DocumentStatus, ErrorKind
from stamping.coordination.classifier import RETRYABLE_KINDS
from stamping.coordination.errors import DocumentNotFoundError
from stamping.coordination.lock import Clock
from stamping.db.models.base import utcnow
from stamping.db.models.submission_attempt import SubmissionAttempt
from stamping.db.session import SessionFactory, session_scope
from stamping.repositories import attempts as attempt_repo
from stamping.repositories import documents as document_repo

# Failure kinds that will not go away by retrying the same content.
PERMANENT_KINDS = frozenset(kind.value for kind in ErrorKind if kind not in RETRYABLE_KINDS) - {
    ErrorKind.DUPLICATE.value
}


@dataclass(frozen=True)
class AttemptView:
    attempt_id: str
    idempotency_key: str
    content_version: int
    status: str
    worker_id: str | None
    started_at: datetime | None
    completed_at: datetime | None
    attempt_count: int
    error_kind: str | None
    error_message: str | None

    @classmethod
    def from_model(cls, attempt: SubmissionAttempt) -> "AttemptView":
        return cls(
            attempt_id=str(attempt.id),
            idempotency_key=attempt.idempotency_key,
            content_version=attempt.content_version,
            status=attempt.status,
            worker_id=attempt.worker_id,
            started_at=attempt.started_at,
            completed_at=attempt.completed_at,
            attempt_count=attempt.attempt_count or 0,
            error_kind=attempt.error_kind,
            error_message=attempt.error_message,
        )


@dataclass(frozen=True)
class DocumentView:
    document_id: str
    status: str
    external_reference: str | None
    submitted_at: datetime | None
    lock_owner: str | None
    lock_age_seconds: float | None
    last_error_kind: str | None
    last_error_message: str | None
    last_attempt: AttemptView | None


@dataclass(frozen=True)
class Readiness:
    document_id: str
    can_submit: bool
    current_status: str
    issues: list[str] = field(default_factory=list)
    recent_attempts: list[AttemptView] = field(default_factory=list)


@dataclass(frozen=True)
class SubmissionStats:
    total: int
    success: int
    failed: int
    in_progress: int
    expired: int
    success_rate: float
    failures_by_kind: dict[str, int]

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "success": self.success,
            "failed": self.failed,
            "in_progress": self.in_progress,
            "expired": self.expired,
            "success_rate": self.success_rate,
            "failures_by_kind": dict(self.failures_by_kind),
        }


class SubmissionInspector:
    """Status, readiness and statistics queries."""

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

    async def describe(self, document_id: uuid.UUID | str) -> DocumentView:
        """Current status, reference, lock and last attempt diagnostics."""
        now = self._clock()
        async with session_scope(self._session_factory) as db:
            document = await document_repo.get_document(db, document_id)
            if document is None:
                raise DocumentNotFoundError(f"Document {document_id} not found", document_id=str(document_id))
            recent = await attempt_repo.list_recent(db, document_id, limit=1)

            lock_age = None
            if document.lock_owner and document.lock_acquired_at:
                lock_age = (now - document.lock_acquired_at).total_seconds()

            return DocumentView(
                document_id=str(document.id),
                status=document.status,
                external_reference=document.external_reference,
                submitted_at=document.submitted_at,
                lock_owner=document.lock_owner,
                lock_age_seconds=lock_age,
                last_error_kind=document.last_error_kind,
                last_error_message=document.last_error_message,
                last_attempt=AttemptView.from_model(recent[0]) if recent else None,
            )

    async def check_readiness(self, document_id: uuid.UUID | str) -> Readiness:
        """Whether a new submission would be accepted, and if not, why."""
        now = self._clock()
        async with session_scope(self._session_factory) as db:
            document = await document_repo.get_document(db, document_id)
            if document is None:
                raise DocumentNotFoundError(f"Document {document_id} not found", document_id=str(document_id))
            recent = await attempt_repo.list_recent(db, document_id, limit=5)

            issues: list[str] = []
            if document.status == DocumentStatus.SUBMITTED:
                issues.append(f"Document is already submitted ({document.external_reference})")
            if document.status == DocumentStatus.CANCELLED:
                issues.append("Document is cancelled")
            if (
                document.lock_owner
                and document.lock_acquired_at
                and now - document.lock_acquired_at < self.lock_timeout
            ):
                issues.append(f"A submission is in progress (worker: {document.lock_owner})")

            permanent = [
                a for a in recent
                if a.status == AttemptStatus.FAILED and a.error_kind in PERMANENT_KINDS
            ]
            if permanent:
                issues.append(
                    f"{len(permanent)} previous permanent failure(s); review the document before retrying"
                )

            return Readiness(
                document_id=str(document.id),
                can_submit=not issues,
                current_status=document.status,
                issues=issues,
                recent_attempts=[AttemptView.from_model(a) for a in recent],
            )

    async def get_attempt_by_key(self, idempotency_key: str) -> AttemptView | None:
        """Prior outcome for an idempotency key, without calling the provider."""
        async with session_scope(self._session_factory) as db:
            attempt = await attempt_repo.get_attempt_by_key(db, idempotency_key)
            return AttemptView.from_model(attempt) if attempt else None

    async def stats(self) -> SubmissionStats:
        async with session_scope(self._session_factory) as db:
            by_status = await attempt_repo.count_by_status(db)
            by_kind = await attempt_repo.count_failures_by_kind(db)

        total = sum(by_status.values())
        success = by_status.get(AttemptStatus.SUCCESS.value, 0)
        return SubmissionStats(
            total=total,
            success=success,
            failed=by_status.get(AttemptStatus.FAILED.value, 0),
            in_progress=by_status.get(AttemptStatus.IN_PROGRESS.value, 0),
            expired=by_status.get(AttemptStatus.EXPIRED.value, 0),
            success_rate=(success / total * 100) if total else 0.0,
            failures_by_kind=by_kind,
        )
