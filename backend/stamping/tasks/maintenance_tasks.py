"""
Celery tasks — periodic maintenance (scheduled by celery beat).
"""

import asyncio

import structlog

from stamping.tasks import celery_app
from stamping.core.config import settings
from stamping.coordination.reaper import StaleStateReaper, SweepResult
from stamping.db.session import build_engine, build_session_factory

logger = structlog.get_logger("tasks.maintenance")


async def _sweep() -> SweepResult:
    engine = build_engine(settings.DATABASE_URL)
    try:
        reaper = StaleStateReaper.from_settings(build_session_factory(engine), settings)
        return await reaper.sweep()
    finally:
        await engine.dispose()


@celery_app.task(bind=True, name="stamping.tasks.maintenance_tasks.reap_stale_submissions")
def reap_stale_submissions(self):
    """Expire abandoned attempts and clear orphaned locks."""
    result = asyncio.run(_sweep())
    logger.info("Reaper task finished", task_id=self.request.id, **result.to_dict())
    return result.to_dict()
