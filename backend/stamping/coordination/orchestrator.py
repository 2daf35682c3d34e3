"""
SubmissionOrchestrator — per-job control flow around one provider call.

    START → PRECHECK → LOCK_WAIT → CALLING → COMMIT → DONE

Early exits to DONE at PRECHECK (already submitted / cancelled) and at
LOCK_WAIT (rejected).  The orchestrator never loops and never raises for
expected outcomes: it returns a SubmissionOutcome and the scheduler
decides what to do with it (see stamping.submission.retry_handler).

Responsibilities:
    - Skip the lock entirely when the document is already submitted
    - Acquire the document lock through the LockCoordinator
    - Call the provider under a call-level timeout
    - Classify failures and apply the UNKNOWN retry budget
    - Release the lock with the outcome, always
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

import structlog

from stamping.core.config import Settings
from stamping.core.constants import DocumentStatus, ErrorKind, JobOutcome, OrchestratorState, RejectReason
from stamping.coordination.classifier import ErrorClassification, classify
from stamping.coordination.errors import DocumentNotFoundError, ProviderError, ProviderTimeoutError
from stamping.coordination.lock import AttemptOutcome, Clock, LockAcquired, LockCoordinator
from stamping.db.models.base import utcnow
from stamping.db.session import SessionFactory, session_scope
from stamping.provider.base import ProviderCredentials, ProviderReceipt, ProviderRequest, SubmissionProvider
from stamping.repositories import attempts as attempt_repo
from stamping.repositories import documents as document_repo


@dataclass(frozen=True)
class SubmissionJob:
    """What the queue hands to a worker."""

    document_id: str
    content_version: int = 1
    context: dict[str, Any] | None = None


@dataclass(frozen=True)
class SubmissionOutcome:
    """Final result of one orchestrator run."""

    document_id: str
    outcome: JobOutcome
    states: tuple[OrchestratorState, ...]
    external_reference: str | None = None
    attempt_id: str | None = None
    reject_reason: RejectReason | None = None
    classification: ErrorClassification | None = None
    error_message: str | None = None
    reconciled: bool = False

    @property
    def should_retry(self) -> bool:
        """True when the scheduler should run the job again (either kind of retry)."""
        return self.outcome in (JobOutcome.RETRY_LATER, JobOutcome.RETRYABLE_FAILURE)

    def to_dict(self) -> dict[str, Any]:
        """Serialise for the Celery result backend (JSON only)."""
        return {
            "document_id": self.document_id,
            "outcome": self.outcome.value,
            "states": [s.value for s in self.states],
            "external_reference": self.external_reference,
            "attempt_id": self.attempt_id,
            "reject_reason": self.reject_reason.value if self.reject_reason else None,
            "error": self.classification.to_dict() if self.classification else None,
            "error_message": self.error_message,
            "reconciled": self.reconciled,
        }


@dataclass
class _Run:
    """Mutable trace of one job while it moves through the states."""

    job: SubmissionJob
    worker_id: str
    states: list[OrchestratorState] = field(default_factory=lambda: [OrchestratorState.START])

    def enter(self, state: OrchestratorState) -> None:
        self.states.append(state)

    def finish(self, outcome: JobOutcome, **kwargs: Any) -> SubmissionOutcome:
        self.enter(OrchestratorState.DONE)
        return SubmissionOutcome(
            document_id=self.job.document_id,
            outcome=outcome,
            states=tuple(self.states),
            **kwargs,
        )


class SubmissionOrchestrator:
    """
    Runs one submission job to a SubmissionOutcome.

    Usage::

        orchestrator = SubmissionOrchestrator(
            session_factory,
            lock_coordinator=LockCoordinator(session_factory),
            provider=build_provider(settings),
        )
        outcome = await orchestrator.run(SubmissionJob(document_id, 1), worker_id="host:42:abc")
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        lock_coordinator: LockCoordinator,
        provider: SubmissionProvider,
        credentials: ProviderCredentials | None = None,
        call_timeout: timedelta = timedelta(seconds=120),
        unknown_retry_budget: int = 1,
        clock: Clock = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._locks = lock_coordinator
        self._provider = provider
        self._credentials = credentials or ProviderCredentials()
        self.call_timeout = call_timeout
        self.unknown_retry_budget = unknown_retry_budget
        self._clock = clock
        self.logger = structlog.get_logger("coordination.orchestrator")

    @classmethod
    def from_settings(
        cls,
        session_factory: SessionFactory,
        settings: Settings,
        *,
        provider: SubmissionProvider,
        credentials: ProviderCredentials | None = None,
        clock: Clock = utcnow,
    ) -> "SubmissionOrchestrator":
        return cls(
            session_factory,
            lock_coordinator=LockCoordinator.from_settings(session_factory, settings, clock=clock),
            provider=provider,
            credentials=credentials,
            call_timeout=timedelta(seconds=settings.PROVIDER_CALL_TIMEOUT_SECONDS),
            unknown_retry_budget=settings.UNKNOWN_ERROR_RETRY_BUDGET,
            clock=clock,
        )

    async def run(self, job: SubmissionJob, *, worker_id: str) -> SubmissionOutcome:
        """Process one job. Raises DocumentNotFoundError for unknown documents."""
        run = _Run(job=job, worker_id=worker_id)
        log = self.logger.bind(
            document_id=job.document_id,
            content_version=job.content_version,
            worker_id=worker_id,
        )

        # ── PRECHECK ──────────────────────────────────
        run.enter(OrchestratorState.PRECHECK)
        document_status, external_reference, content = await self._precheck(job)
        if document_status == DocumentStatus.SUBMITTED:
            log.info("Already submitted, skipping lock", outcome=JobOutcome.ALREADY_SUBMITTED.value)
            return run.finish(JobOutcome.ALREADY_SUBMITTED, external_reference=external_reference)
        if document_status == DocumentStatus.CANCELLED:
            log.info("Document cancelled, nothing to submit", outcome=JobOutcome.CANCELLED.value)
            return run.finish(JobOutcome.CANCELLED, reject_reason=RejectReason.CANCELLED)

        # ── LOCK_WAIT ─────────────────────────────────
        run.enter(OrchestratorState.LOCK_WAIT)
        lock = await self._locks.acquire(
            job.document_id,
            job.content_version,
            worker_id,
            context=job.context,
        )
        if not lock.acquired:
            if lock.reason == RejectReason.ALREADY_SUBMITTED:
                return run.finish(
                    JobOutcome.ALREADY_SUBMITTED,
                    external_reference=lock.external_reference,
                    reject_reason=lock.reason,
                )
            if lock.reason == RejectReason.CANCELLED:
                return run.finish(JobOutcome.CANCELLED, reject_reason=lock.reason)
            log.info("Lock busy, retry later", outcome=JobOutcome.RETRY_LATER.value, reason=lock.reason.value)
            return run.finish(JobOutcome.RETRY_LATER, reject_reason=lock.reason)

        log = log.bind(attempt_id=lock.attempt_id, attempt_count=lock.attempt_count)

        # ── CALLING ───────────────────────────────────
        run.enter(OrchestratorState.CALLING)
        try:
            receipt = await self._call_provider(job, lock, content)
        except Exception as exc:
            run.enter(OrchestratorState.COMMIT)
            return await self._commit_failure(run, lock, exc, log)
        except asyncio.CancelledError:
            run.enter(OrchestratorState.COMMIT)
            await self._release_cancelled(run, lock, log)
            raise

        # ── COMMIT ────────────────────────────────────
        run.enter(OrchestratorState.COMMIT)
        return await self._commit_success(run, lock, receipt, log)

    # ─── Steps ────────────────────────────────────────

    async def _precheck(self, job: SubmissionJob) -> tuple[str, str | None, str]:
        """Read the document's status without taking the lock."""
        async with session_scope(self._session_factory) as db:
            document = await document_repo.get_document(db, job.document_id)
            if document is None:
                raise DocumentNotFoundError(
                    f"Document {job.document_id} not found",
                    document_id=job.document_id,
                )
            return document.status, document.external_reference, document.content

    async def _call_provider(
        self,
        job: SubmissionJob,
        lock: LockAcquired,
        content: str,
    ) -> ProviderReceipt:
        """Invoke the provider under the call-level timeout."""
        request = ProviderRequest(
            document_id=job.document_id,
            content=content,
            idempotency_key=lock.idempotency_key,
            credentials=self._credentials,
        )
        timeout_seconds = self.call_timeout.total_seconds()
        try:
            return await asyncio.wait_for(self._provider.submit(request), timeout=timeout_seconds)
        except TimeoutError as exc:
            raise ProviderTimeoutError(
                f"Provider call timed out after {timeout_seconds:g}s",
                document_id=job.document_id,
                timeout_seconds=timeout_seconds,
            ) from exc

    async def _commit_success(
        self,
        run: _Run,
        lock: LockAcquired,
        receipt: ProviderReceipt,
        log: structlog.BoundLogger,
    ) -> SubmissionOutcome:
        released = await self._locks.release(
            lock.document_id,
            lock.attempt_id,
            AttemptOutcome.succeeded(
                run.worker_id,
                external_reference=receipt.external_reference,
                stamped_at=receipt.stamped_at,
                provider_metadata=receipt.metadata,
            ),
        )
        outcome = (
            JobOutcome.SUBMITTED
            if released.external_reference == receipt.external_reference
            else JobOutcome.ALREADY_SUBMITTED
        )
        log.info(
            "Submission committed",
            outcome=outcome.value,
            external_reference=released.external_reference,
            reconciled=released.reconciled,
        )
        return run.finish(
            outcome,
            external_reference=released.external_reference,
            attempt_id=lock.attempt_id,
            reconciled=released.reconciled,
        )

    async def _commit_failure(
        self,
        run: _Run,
        lock: LockAcquired,
        exc: Exception,
        log: structlog.BoundLogger,
    ) -> SubmissionOutcome:
        classification = classify(exc)
        message = str(exc) or type(exc).__name__
        provider_response = exc.response if isinstance(exc, ProviderError) else {}

        # Provider says it already has this document and tells us its reference.
        if (
            classification.kind == ErrorKind.DUPLICATE
            and isinstance(exc, ProviderError)
            and exc.existing_reference
        ):
            log.info("Provider reports duplicate with reference, committing as success")
            receipt = ProviderReceipt(
                external_reference=exc.existing_reference,
                stamped_at=self._clock(),
                metadata={"duplicate": True, **provider_response},
            )
            return await self._commit_success(run, lock, receipt, log)

        retryable = classification.retryable
        if classification.kind == ErrorKind.UNKNOWN:
            # Budget is per idempotency key: this failure is number count+1.
            retryable = lock.unknown_error_count + 1 <= self.unknown_retry_budget
        effective = ErrorClassification(kind=classification.kind, retryable=retryable)

        released = await self._locks.release(
            lock.document_id,
            lock.attempt_id,
            AttemptOutcome.failed(
                run.worker_id,
                error_kind=classification.kind,
                error_message=message,
                terminal=not retryable,
                provider_response=provider_response,
            ),
        )

        if released.document_status == DocumentStatus.SUBMITTED:
            # A late success from another worker landed while we were failing.
            log.info("Failure superseded by existing submission", external_reference=released.external_reference)
            return run.finish(
                JobOutcome.ALREADY_SUBMITTED,
                external_reference=released.external_reference,
                attempt_id=lock.attempt_id,
                classification=effective,
                error_message=message,
            )

        if not released.applied:
            # Our attempt expired during the call; whoever holds the document now decides.
            log.warning("Failure arrived after lock expiry", error_kind=classification.kind.value, error=message)
            return run.finish(
                JobOutcome.RETRY_LATER,
                attempt_id=lock.attempt_id,
                classification=effective,
                error_message=message,
            )

        outcome = JobOutcome.RETRYABLE_FAILURE if retryable else JobOutcome.PERMANENT_FAILURE
        log_method = log.warning if retryable else log.error
        log_method(
            "Submission failed",
            outcome=outcome.value,
            error_kind=classification.kind.value,
            retryable=retryable,
            error=message,
        )
        return run.finish(
            outcome,
            attempt_id=lock.attempt_id,
            classification=effective,
            error_message=message,
        )

    async def _release_cancelled(
        self,
        run: _Run,
        lock: LockAcquired,
        log: structlog.BoundLogger,
    ) -> None:
        """Give the lock back when the job is cancelled mid-call."""
        log.warning("Provider call cancelled, releasing lock", outcome=JobOutcome.RETRYABLE_FAILURE.value)
        await self._locks.release(
            lock.document_id,
            lock.attempt_id,
            AttemptOutcome.failed(
                run.worker_id,
                error_kind=ErrorKind.NETWORK,
                error_message="Provider call cancelled before a response arrived",
                terminal=False,
            ),
        )

    # ─── Scheduler support ───────────────────────────

    async def abandon(self, document_id: uuid.UUID | str, *, reason: str) -> bool:
        """
        Mark a document ERROR after the scheduler has given up retrying.

        Keeps the last attempt's error kind. Returns False if the document
        was already submitted or cancelled.
        """
        async with session_scope(self._session_factory) as db:
            document = await document_repo.get_document_for_update(db, document_id)
            if document is None:
                raise DocumentNotFoundError(f"Document {document_id} not found", document_id=str(document_id))
            recent = await attempt_repo.list_recent(db, document_id, limit=1)
            last_kind = recent[0].error_kind if recent and recent[0].error_kind else ErrorKind.UNKNOWN.value
            last_message = recent[0].error_message if recent and recent[0].error_message else ""
            changed = await document_repo.mark_error(
                db,
                document,
                error_kind=last_kind,
                error_message=f"{reason}: {last_message}" if last_message else reason,
            )

        self.logger.warning(
            "Document abandoned by scheduler",
            document_id=str(document_id),
            reason=reason,
            outcome="ERROR" if changed else "UNCHANGED",
        )
        return changed
