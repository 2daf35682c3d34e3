"""
SubmissionAttempt — audit trail of submission tries, one row per idempotency key.

Retried submissions of the same (document, content version, context)
reuse and update the same row.  Rows are never deleted, only transitioned.
"""

from __future__ import annotations

from sqlalchemy import Column, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import relationship

from stamping.core.constants import AttemptStatus
from stamping.db.models.base import Base, JSONType, UTCDateTime, generate_uuid, utcnow


class SubmissionAttempt(Base):
    """One logical unit of submission work."""

    __tablename__ = "submission_attempts"
    __table_args__ = (
        Index("ix_submission_attempts_document_status", "document_id", "status"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=generate_uuid)
    document_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("stampable_documents.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    # ── Identity of the unit of work ─────────
    content_version = Column(Integer, nullable=False)
    idempotency_key = Column(String(64), nullable=False, unique=True)
    context = Column(JSONType, nullable=True)

    # ── Lifecycle ────────────────────────────
    status = Column(String(20), nullable=False, default=AttemptStatus.PENDING.value, index=True)
    worker_id = Column(String(255), nullable=True)
    started_at = Column(UTCDateTime(), default=utcnow, nullable=False)
    completed_at = Column(UTCDateTime(), nullable=True)

    # Times this record entered IN_PROGRESS.
    attempt_count = Column(Integer, nullable=False, default=0)
    # Failures classified UNKNOWN; bounded by UNKNOWN_ERROR_RETRY_BUDGET.
    unknown_error_count = Column(Integer, nullable=False, default=0)

    # ── Diagnostics ──────────────────────────
    error_kind = Column(String(30), nullable=True)
    error_message = Column(Text, nullable=True)
    provider_response = Column(JSONType, nullable=True)

    # ── Relationship ──────────────────────────
    document = relationship("StampableDocument", back_populates="attempts")

    def __repr__(self) -> str:
        return (
            f"<SubmissionAttempt {self.id} document={self.document_id} "
            f"status={self.status} worker={self.worker_id}>"
        )
