"""
Alembic environment for the stamping store (stampable_documents, submission_attempts).

The workers talk to the store through asyncpg/aiosqlite; migrations run
on the plain driver behind settings.DATABASE_URL_SYNC.  SQLite needs
batch mode for ALTER TABLE, so it is switched on for that dialect only.
"""

from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool

from stamping.core.config import settings
from stamping.db.models import Base  # noqa: F401 — registers both tables on Base.metadata

config = context.config

sync_url = settings.DATABASE_URL_SYNC
config.set_main_option("sqlalchemy.url", sync_url)

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def _batch_mode(url: str) -> bool:
    return url.startswith("sqlite")


def run_migrations_offline() -> None:
    """Emit the schema DDL as SQL for review by a DBA."""
    context.configure(
        url=sync_url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        render_as_batch=_batch_mode(sync_url),
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Apply pending revisions against the configured store."""
    engine = create_engine(sync_url, poolclass=pool.NullPool)
    try:
        with engine.connect() as connection:
            context.configure(
                connection=connection,
                target_metadata=target_metadata,
                compare_type=True,
                render_as_batch=connection.dialect.name == "sqlite",
            )
            with context.begin_transaction():
                context.run_migrations()
    finally:
        engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
