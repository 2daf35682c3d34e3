from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from stamping.core.constants import DocumentStatus
from stamping.db.models import StampableDocument, SubmissionAttempt
from stamping.db.session import SessionFactory, build_engine, build_session_factory, init_models, session_scope
from stamping.repositories import attempts as attempt_repo
from stamping.repositories import documents as document_repo


@asynccontextmanager
async def open_store(url: str) -> AsyncIterator[SessionFactory]:
    """Fresh schema on a temporary SQLite file; engine disposed on exit."""
    engine = build_engine(url)
    await init_models(engine)
    try:
        yield build_session_factory(engine)
    finally:
        await engine.dispose()


async def seed_document(
    factory: SessionFactory,
    *,
    content: str = "<document total='100.00'/>",
    status: DocumentStatus | None = None,
    external_reference: str | None = None,
) -> str:
    async with session_scope(factory) as db:
        document = await document_repo.create_document(db, content=content)
        if status is not None:
            document.status = status.value
        if external_reference is not None:
            document.external_reference = external_reference
        await db.flush()
        return str(document.id)


async def load_document(factory: SessionFactory, document_id: str) -> StampableDocument:
    async with session_scope(factory) as db:
        document = await document_repo.get_document(db, document_id)
        assert document is not None
        return document


async def load_attempts(factory: SessionFactory, document_id: str) -> list[SubmissionAttempt]:
    async with session_scope(factory) as db:
        return await attempt_repo.list_recent(db, document_id, limit=50)
