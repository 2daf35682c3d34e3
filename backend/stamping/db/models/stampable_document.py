"""
StampableDocument — the fiscal artifact submitted to the certification provider.

One row per document.  The lock columns are only populated while a worker
holds exclusive submission rights; once `status` is SUBMITTED the
submission columns are write-once.
"""

from __future__ import annotations

from sqlalchemy import Column, Integer, String, Text, Uuid
from sqlalchemy.orm import relationship

from stamping.core.constants import DocumentStatus
from stamping.db.models.base import Base, JSONType, UTCDateTime, generate_uuid, utcnow


class StampableDocument(Base):
    """A document awaiting (or done with) external certification."""

    __tablename__ = "stampable_documents"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=generate_uuid)

    # ── Content ──────────────────────────────
    content = Column(Text, nullable=False)
    content_version = Column(Integer, nullable=False, default=1)

    # ── Status ───────────────────────────────
    status = Column(String(20), nullable=False, default=DocumentStatus.PENDING.value, index=True)

    # ── Provider result (write-once) ─────────
    external_reference = Column(String(100), nullable=True, unique=True)
    submitted_at = Column(UTCDateTime(), nullable=True)
    provider_metadata = Column(JSONType, nullable=True)

    # ── Submission lock ──────────────────────
    lock_owner = Column(String(255), nullable=True)
    lock_acquired_at = Column(UTCDateTime(), nullable=True, index=True)

    # ── Last failure (shown while status is ERROR) ──
    last_error_kind = Column(String(30), nullable=True)
    last_error_message = Column(Text, nullable=True)

    # ── Audit timestamps ─────────────────────
    created_at = Column(UTCDateTime(), default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime(), default=utcnow, onupdate=utcnow, nullable=False)

    # ── Relationships ─────────────────────────
    attempts = relationship(
        "SubmissionAttempt",
        back_populates="document",
        order_by="SubmissionAttempt.started_at",
    )

    def __repr__(self) -> str:
        return f"<StampableDocument {self.id} status={self.status} lock_owner={self.lock_owner}>"
