"""
Document repository containing all data-access operations for stampable_documents.

Repository rules:
- Pure data-access logic only
- Every function receives AsyncSession explicitly
- Functions flush, but never commit
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from stamping.core.constants import DocumentStatus
from stamping.db.models.stampable_document import StampableDocument


def as_uuid(value: uuid.UUID | str) -> uuid.UUID:
    """Accept UUID objects or their string form."""
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))


async def create_document(
    db: AsyncSession,
    *,
    content: str,
    content_version: int = 1,
    document_id: uuid.UUID | str | None = None,
) -> StampableDocument:
    """Register a new document in PENDING state."""
    document = StampableDocument(
        content=content,
        content_version=content_version,
        status=DocumentStatus.PENDING.value,
    )
    if document_id is not None:
        document.id = as_uuid(document_id)
    db.add(document)
    await db.flush()
    return document


async def get_document(db: AsyncSession, document_id: uuid.UUID | str) -> StampableDocument | None:
    """Fetch a document by primary key (no lock)."""
    stmt = select(StampableDocument).where(StampableDocument.id == as_uuid(document_id))
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def get_document_for_update(
    db: AsyncSession,
    document_id: uuid.UUID | str,
) -> StampableDocument | None:
    """Fetch a document and lock its row until the transaction ends."""
    stmt = (
        select(StampableDocument)
        .where(StampableDocument.id == as_uuid(document_id))
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def stamp_lock(
    db: AsyncSession,
    document: StampableDocument,
    *,
    worker_id: str,
    now: datetime,
) -> None:
    """Record `worker_id` as the lock holder from `now`."""
    document.lock_owner = worker_id
    document.lock_acquired_at = now
    await db.flush()


async def clear_lock(db: AsyncSession, document: StampableDocument) -> None:
    """Drop the lock fields."""
    document.lock_owner = None
    document.lock_acquired_at = None
    await db.flush()


async def reopen_for_retry(db: AsyncSession, document: StampableDocument) -> None:
    """Move an ERROR document back to PENDING while a new attempt runs."""
    document.status = DocumentStatus.PENDING.value
    document.last_error_kind = None
    document.last_error_message = None
    await db.flush()


async def mark_submitted(
    db: AsyncSession,
    document: StampableDocument,
    *,
    external_reference: str,
    submitted_at: datetime,
    provider_metadata: dict[str, Any] | None = None,
) -> None:
    """Persist the provider's reference and make the document write-once."""
    document.status = DocumentStatus.SUBMITTED.value
    document.external_reference = external_reference
    document.submitted_at = submitted_at
    document.provider_metadata = provider_metadata or {}
    document.last_error_kind = None
    document.last_error_message = None
    await db.flush()


async def mark_error(
    db: AsyncSession,
    document: StampableDocument,
    *,
    error_kind: str,
    error_message: str,
) -> bool:
    """
    Mark a document as permanently failed.

    Returns False (and changes nothing) when the document is already
    SUBMITTED or CANCELLED.
    """
    if document.status in (DocumentStatus.SUBMITTED, DocumentStatus.CANCELLED):
        return False
    document.status = DocumentStatus.ERROR.value
    document.last_error_kind = error_kind
    document.last_error_message = error_message[:2000]
    await db.flush()
    return True


async def clear_stale_locks(db: AsyncSession, *, cutoff: datetime) -> int:
    """Clear locks older than `cutoff` on documents not yet submitted. Returns rows changed."""
    stmt = (
        update(StampableDocument)
        .where(
            StampableDocument.lock_owner.is_not(None),
            StampableDocument.lock_acquired_at < cutoff,
            StampableDocument.status != DocumentStatus.SUBMITTED.value,
        )
        .values(lock_owner=None, lock_acquired_at=None)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    await db.flush()
    return result.rowcount or 0
