"""
Attempt ledger repository — data access for submission_attempts.

Repository rules:
- Pure data-access logic only
- Every function receives AsyncSession explicitly
- Functions flush, but never commit
- Rows are never deleted
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from stamping.core.constants import AttemptStatus
from stamping.db.models.submission_attempt import SubmissionAttempt
from stamping.repositories.documents import as_uuid

EXPIRED_MESSAGE = "Timed out: submission did not complete within the lock window"


async def get_attempt(db: AsyncSession, attempt_id: uuid.UUID | str) -> SubmissionAttempt | None:
    """Fetch an attempt by primary key."""
    stmt = (
        select(SubmissionAttempt)
        .where(SubmissionAttempt.id == as_uuid(attempt_id))
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def get_attempt_by_key(db: AsyncSession, idempotency_key: str) -> SubmissionAttempt | None:
    """Fetch the (single) attempt recorded under an idempotency key."""
    stmt = (
        select(SubmissionAttempt)
        .where(SubmissionAttempt.idempotency_key == idempotency_key)
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def find_fresh_in_progress(
    db: AsyncSession,
    document_id: uuid.UUID | str,
    *,
    started_after: datetime,
) -> SubmissionAttempt | None:
    """An IN_PROGRESS attempt for the document that started after `started_after`."""
    stmt = (
        select(SubmissionAttempt)
        .where(
            SubmissionAttempt.document_id == as_uuid(document_id),
            SubmissionAttempt.status == AttemptStatus.IN_PROGRESS.value,
            SubmissionAttempt.started_at > started_after,
        )
        .order_by(SubmissionAttempt.started_at.desc())
        .limit(1)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def upsert_in_progress(
    db: AsyncSession,
    *,
    document_id: uuid.UUID | str,
    content_version: int,
    idempotency_key: str,
    worker_id: str,
    now: datetime,
    context: dict[str, Any] | None = None,
) -> SubmissionAttempt:
    """
    Create the attempt for `idempotency_key` or revive the existing one,
    leaving it IN_PROGRESS and owned by `worker_id`.

    The caller must hold the document row lock so two workers cannot
    race on the same key.
    """
    attempt = await get_attempt_by_key(db, idempotency_key)
    if attempt is None:
        attempt = SubmissionAttempt(
            document_id=as_uuid(document_id),
            content_version=content_version,
            idempotency_key=idempotency_key,
            context=context or {},
            unknown_error_count=0,
        )
        db.add(attempt)

    attempt.status = AttemptStatus.IN_PROGRESS.value
    attempt.worker_id = worker_id
    attempt.started_at = now
    attempt.completed_at = None
    attempt.error_kind = None
    attempt.error_message = None
    attempt.provider_response = None
    attempt.attempt_count = (attempt.attempt_count or 0) + 1
    await db.flush()
    return attempt


async def mark_success(
    db: AsyncSession,
    attempt: SubmissionAttempt,
    *,
    worker_id: str,
    now: datetime,
    provider_response: dict[str, Any] | None = None,
) -> None:
    """Transition an attempt to SUCCESS."""
    attempt.status = AttemptStatus.SUCCESS.value
    attempt.worker_id = worker_id
    attempt.completed_at = now
    attempt.error_kind = None
    attempt.error_message = None
    attempt.provider_response = provider_response or {}
    await db.flush()


async def mark_failed(
    db: AsyncSession,
    attempt: SubmissionAttempt,
    *,
    now: datetime,
    error_kind: str,
    error_message: str,
    provider_response: dict[str, Any] | None = None,
    count_unknown: bool = False,
) -> None:
    """Transition an attempt to FAILED with diagnostics."""
    attempt.status = AttemptStatus.FAILED.value
    attempt.completed_at = now
    attempt.error_kind = error_kind
    attempt.error_message = error_message[:2000]
    attempt.provider_response = provider_response or {}
    if count_unknown:
        attempt.unknown_error_count = (attempt.unknown_error_count or 0) + 1
    await db.flush()


async def expire_stale(
    db: AsyncSession,
    *,
    cutoff: datetime,
    now: datetime,
    document_id: uuid.UUID | str | None = None,
) -> int:
    """
    Move IN_PROGRESS attempts started before `cutoff` to EXPIRED.

    Restricted to one document when `document_id` is given. Returns rows changed.
    """
    conditions = [
        SubmissionAttempt.status == AttemptStatus.IN_PROGRESS.value,
        SubmissionAttempt.started_at < cutoff,
    ]
    if document_id is not None:
        conditions.append(SubmissionAttempt.document_id == as_uuid(document_id))
    stmt = (
        update(SubmissionAttempt)
        .where(*conditions)
        .values(
            status=AttemptStatus.EXPIRED.value,
            completed_at=now,
            error_message=EXPIRED_MESSAGE,
        )
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    await db.flush()
    return result.rowcount or 0


async def list_recent(
    db: AsyncSession,
    document_id: uuid.UUID | str,
    *,
    limit: int = 5,
) -> list[SubmissionAttempt]:
    """Most recent attempts for a document, newest first."""
    stmt = (
        select(SubmissionAttempt)
        .where(SubmissionAttempt.document_id == as_uuid(document_id))
        .order_by(SubmissionAttempt.started_at.desc())
        .limit(limit)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def count_by_status(db: AsyncSession) -> dict[str, int]:
    """Attempt counts keyed by status."""
    stmt = select(SubmissionAttempt.status, func.count()).group_by(SubmissionAttempt.status)
    result = await db.execute(stmt)
    return {status: count for status, count in result.all()}


async def count_failures_by_kind(db: AsyncSession) -> dict[str, int]:
    """FAILED attempt counts keyed by error kind."""
    stmt = (
        select(SubmissionAttempt.error_kind, func.count())
        .where(SubmissionAttempt.status == AttemptStatus.FAILED.value)
        .group_by(SubmissionAttempt.error_kind)
    )
    result = await db.execute(stmt)
    return {kind or "UNKNOWN": count for kind, count in result.all()}
