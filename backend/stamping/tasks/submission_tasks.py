"""
Celery tasks — document submission.

The task is the only place that retries: the orchestrator returns an
outcome, `plan_retry` turns it into a decision, and the task re-queues
itself with `self.retry()` or gives up.
"""

import asyncio
import os
import socket

import structlog

from stamping.tasks import celery_app
from stamping.core.config import settings
from stamping.core.constants import RetryAction
from stamping.coordination.orchestrator import SubmissionJob, SubmissionOrchestrator, SubmissionOutcome
from stamping.db.session import build_engine, build_session_factory
from stamping.provider import build_provider, credentials_from_settings
from stamping.submission.retry_handler import plan_retry

logger = structlog.get_logger("tasks.submission")


def worker_identity(task_id: str | None) -> str:
    """Unique id for one task run: host, process and Celery task id."""
    return f"{socket.gethostname()}:{os.getpid()}:{task_id or 'eager'}"


async def _run_submission(job: SubmissionJob, worker_id: str) -> SubmissionOutcome:
    """Run one job against a fresh engine (avoids event loop conflicts between task runs)."""
    engine = build_engine(settings.DATABASE_URL)
    try:
        orchestrator = SubmissionOrchestrator.from_settings(
            build_session_factory(engine),
            settings,
            provider=build_provider(settings),
            credentials=credentials_from_settings(settings),
        )
        return await orchestrator.run(job, worker_id=worker_id)
    finally:
        await engine.dispose()


async def _abandon(document_id: str, reason: str) -> bool:
    engine = build_engine(settings.DATABASE_URL)
    try:
        orchestrator = SubmissionOrchestrator.from_settings(
            build_session_factory(engine),
            settings,
            provider=build_provider(settings),
        )
        return await orchestrator.abandon(document_id, reason=reason)
    finally:
        await engine.dispose()


@celery_app.task(
    bind=True,
    name="stamping.tasks.submission_tasks.submit_document",
    max_retries=None,
)
def submit_document(
    self,
    document_id: str,
    content_version: int = 1,
    context: dict | None = None,
    failure_retries: int = 0,
    contention_retries: int = 0,
):
    """
    Submit one document to the certification provider.

    failure_retries / contention_retries are carried between re-queues so
    the two budgets are counted separately.
    """
    worker_id = worker_identity(self.request.id)
    job = SubmissionJob(document_id=document_id, content_version=content_version, context=context)
    task_log = logger.bind(
        task_id=self.request.id,
        document_id=document_id,
        worker_id=worker_id,
        failure_retries=failure_retries,
        contention_retries=contention_retries,
    )

    try:
        outcome = asyncio.run(_run_submission(job, worker_id))
    except Exception as exc:
        task_log.exception("Submission task crashed", error=str(exc))
        raise

    decision = plan_retry(
        outcome.outcome,
        failure_retries=failure_retries,
        contention_retries=contention_retries,
        settings=settings,
    )

    task_log.info(
        "Submission task finished",
        outcome=outcome.outcome.value,
        action=decision.action.value,
        countdown=decision.countdown,
        reason=decision.reason,
    )

    if decision.action == RetryAction.RETRY:
        raise self.retry(
            countdown=decision.countdown,
            kwargs={
                "document_id": document_id,
                "content_version": content_version,
                "context": context,
                "failure_retries": decision.failure_retries,
                "contention_retries": decision.contention_retries,
            },
        )

    if decision.action == RetryAction.GIVE_UP:
        asyncio.run(_abandon(document_id, decision.reason))

    return {**outcome.to_dict(), "action": decision.action.value, "reason": decision.reason}
