"""
Async SQLAlchemy engine and session factory.

Every coordination decision runs inside one transaction opened by
`session_scope()`.  On PostgreSQL the document row is locked with
SELECT ... FOR UPDATE; SQLite has no row locks, so SQLite engines open
every transaction with BEGIN IMMEDIATE, which serializes writers.

Engines are cheap to build and are created per process entry point
(Celery tasks use a fresh engine per run to avoid event loop conflicts).
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from stamping.db.models import Base

SessionFactory = async_sessionmaker[AsyncSession]


def build_engine(url: str, *, echo: bool = False) -> AsyncEngine:
    """Create an async engine for `url` with backend-specific transaction handling."""
    if make_url(url).get_backend_name() != "sqlite":
        return create_async_engine(
            url,
            echo=echo,
            pool_size=20,
            max_overflow=10,
            pool_pre_ping=True,
        )

    engine = create_async_engine(
        url,
        echo=echo,
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        # Stop the driver from emitting its own deferred BEGIN.
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def build_session_factory(engine: AsyncEngine) -> SessionFactory:
    """Session factory bound to `engine`."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@asynccontextmanager
async def session_scope(factory: SessionFactory) -> AsyncIterator[AsyncSession]:
    """Open a session with one transaction; commit on success, roll back on error."""
    async with factory() as session:
        async with session.begin():
            yield session


async def init_models(engine: AsyncEngine) -> None:
    """Create all tables (dev/tests; deployed databases use Alembic)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
