"""stampable documents and submission attempts

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 00:00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

json_type = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    op.create_table(
        "stampable_documents",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("content_version", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("external_reference", sa.String(length=100), nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("provider_metadata", json_type, nullable=True),
        sa.Column("lock_owner", sa.String(length=255), nullable=True),
        sa.Column("lock_acquired_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error_kind", sa.String(length=30), nullable=True),
        sa.Column("last_error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("external_reference"),
    )
    op.create_index("ix_stampable_documents_status", "stampable_documents", ["status"])
    op.create_index("ix_stampable_documents_lock_acquired_at", "stampable_documents", ["lock_acquired_at"])

    op.create_table(
        "submission_attempts",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("document_id", sa.Uuid(), nullable=False),
        sa.Column("content_version", sa.Integer(), nullable=False),
        sa.Column("idempotency_key", sa.String(length=64), nullable=False),
        sa.Column("context", json_type, nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("worker_id", sa.String(length=255), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("attempt_count", sa.Integer(), nullable=False),
        sa.Column("unknown_error_count", sa.Integer(), nullable=False),
        sa.Column("error_kind", sa.String(length=30), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("provider_response", json_type, nullable=True),
        sa.ForeignKeyConstraint(["document_id"], ["stampable_documents.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("idempotency_key"),
    )
    op.create_index("ix_submission_attempts_document_id", "submission_attempts", ["document_id"])
    op.create_index("ix_submission_attempts_status", "submission_attempts", ["status"])
    op.create_index(
        "ix_submission_attempts_document_status",
        "submission_attempts",
        ["document_id", "status"],
    )


def downgrade() -> None:
    op.drop_index("ix_submission_attempts_document_status", table_name="submission_attempts")
    op.drop_index("ix_submission_attempts_status", table_name="submission_attempts")
    op.drop_index("ix_submission_attempts_document_id", table_name="submission_attempts")
    op.drop_table("submission_attempts")
    op.drop_index("ix_stampable_documents_lock_acquired_at", table_name="stampable_documents")
    op.drop_index("ix_stampable_documents_status", table_name="stampable_documents")
    op.drop_table("stampable_documents")
