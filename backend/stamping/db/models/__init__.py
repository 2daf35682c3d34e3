"""
Models package — re-exports Base and all models.

Import models here so Alembic's `target_metadata = Base.metadata`
picks up every table automatically.

When adding a new model:
    1. Create `stamping/db/models/<table_name>.py`
    2. Import it here
"""

from stamping.db.models.base import Base
from stamping.db.models.stampable_document import StampableDocument
from stamping.db.models.submission_attempt import SubmissionAttempt

__all__ = [
    "Base",
    "StampableDocument",
    "SubmissionAttempt",
]
