from __future__ import annotations

import asyncio
import uuid
from datetime import timedelta

import pytest

from stamping.core.constants import AttemptStatus, DocumentStatus, ErrorKind, RejectReason
from stamping.coordination.errors import AttemptNotFoundError, DocumentNotFoundError
from stamping.coordination.idempotency import generate_idempotency_key
from stamping.coordination.lock import AttemptOutcome, LockCoordinator
from stamping.coordination.reaper import StaleStateReaper
from tests.integration.store_utils import load_attempts, load_document, open_store, seed_document

LOCK_TIMEOUT = timedelta(minutes=5)


@pytest.mark.integration
def test_acquire_stamps_lock_and_opens_attempt(database_url, clock) -> None:
    async def _run() -> None:
        async with open_store(database_url) as factory:
            document_id = await seed_document(factory)
            coordinator = LockCoordinator(factory, lock_timeout=LOCK_TIMEOUT, clock=clock)

            result = await coordinator.acquire(document_id, 1, "worker-a")

            assert result.acquired
            assert result.idempotency_key == generate_idempotency_key(document_id, 1)
            assert result.attempt_count == 1
            document = await load_document(factory, document_id)
            assert document.lock_owner == "worker-a"
            assert document.lock_acquired_at == clock.now
            [attempt] = await load_attempts(factory, document_id)
            assert attempt.status == AttemptStatus.IN_PROGRESS
            assert attempt.worker_id == "worker-a"

    asyncio.run(_run())


@pytest.mark.integration
def test_second_worker_is_rejected_while_attempt_is_fresh(database_url, clock) -> None:
    async def _run() -> None:
        async with open_store(database_url) as factory:
            document_id = await seed_document(factory)
            coordinator = LockCoordinator(factory, lock_timeout=LOCK_TIMEOUT, clock=clock)

            first = await coordinator.acquire(document_id, 1, "worker-a")
            clock.advance(30)
            second = await coordinator.acquire(document_id, 1, "worker-b")

            assert first.acquired
            assert not second.acquired
            assert second.reason == RejectReason.IN_PROGRESS
            assert second.lock_owner == "worker-a"
            assert second.existing_attempt_id == first.attempt_id

    asyncio.run(_run())


@pytest.mark.integration
def test_other_content_version_is_blocked_while_document_is_locked(database_url, clock) -> None:
    async def _run() -> None:
        async with open_store(database_url) as factory:
            document_id = await seed_document(factory)
            coordinator = LockCoordinator(factory, lock_timeout=LOCK_TIMEOUT, clock=clock)

            await coordinator.acquire(document_id, 1, "worker-a")
            # Version 2 has its own key, but the document lock is still held.
            result = await coordinator.acquire(document_id, 2, "worker-b")

            assert not result.acquired
            assert result.reason in (RejectReason.IN_PROGRESS, RejectReason.LOCKED)

    asyncio.run(_run())


@pytest.mark.integration
def test_concurrent_acquires_grant_exactly_one_lock(database_url, clock) -> None:
    async def _run() -> None:
        async with open_store(database_url) as factory:
            document_id = await seed_document(factory)
            coordinator = LockCoordinator(factory, lock_timeout=LOCK_TIMEOUT, clock=clock)

            results = await asyncio.gather(
                *(coordinator.acquire(document_id, 1, f"worker-{n}") for n in range(8))
            )

            winners = [r for r in results if r.acquired]
            assert len(winners) == 1
            assert all(r.reason == RejectReason.IN_PROGRESS for r in results if not r.acquired)
            attempts = await load_attempts(factory, document_id)
            assert len(attempts) == 1
            assert attempts[0].worker_id == winners[0].worker_id

    asyncio.run(_run())


@pytest.mark.integration
def test_release_success_makes_document_write_once(database_url, clock) -> None:
    async def _run() -> None:
        async with open_store(database_url) as factory:
            document_id = await seed_document(factory)
            coordinator = LockCoordinator(factory, lock_timeout=LOCK_TIMEOUT, clock=clock)

            lock = await coordinator.acquire(document_id, 1, "worker-a")
            released = await coordinator.release(
                document_id,
                lock.attempt_id,
                AttemptOutcome.succeeded("worker-a", external_reference="REF-1", stamped_at=clock.now),
            )

            assert released.document_status == DocumentStatus.SUBMITTED
            assert released.external_reference == "REF-1"
            assert not released.reconciled
            document = await load_document(factory, document_id)
            assert document.lock_owner is None
            assert document.submitted_at == clock.now
            [attempt] = await load_attempts(factory, document_id)
            assert attempt.status == AttemptStatus.SUCCESS

            again = await coordinator.acquire(document_id, 1, "worker-b")
            assert not again.acquired
            assert again.reason == RejectReason.ALREADY_SUBMITTED
            assert again.external_reference == "REF-1"

    asyncio.run(_run())


@pytest.mark.integration
def test_retryable_failure_keeps_document_pending(database_url, clock) -> None:
    async def _run() -> None:
        async with open_store(database_url) as factory:
            document_id = await seed_document(factory)
            coordinator = LockCoordinator(factory, lock_timeout=LOCK_TIMEOUT, clock=clock)

            lock = await coordinator.acquire(document_id, 1, "worker-a")
            await coordinator.release(
                document_id,
                lock.attempt_id,
                AttemptOutcome.failed(
                    "worker-a",
                    error_kind=ErrorKind.NETWORK,
                    error_message="ECONNRESET",
                    terminal=False,
                ),
            )

            document = await load_document(factory, document_id)
            assert document.status == DocumentStatus.PENDING
            assert document.lock_owner is None

            retry = await coordinator.acquire(document_id, 1, "worker-b")
            assert retry.acquired
            assert retry.attempt_id == lock.attempt_id
            assert retry.attempt_count == 2

    asyncio.run(_run())


@pytest.mark.integration
def test_permanent_failure_marks_error_and_later_acquire_reopens(database_url, clock) -> None:
    async def _run() -> None:
        async with open_store(database_url) as factory:
            document_id = await seed_document(factory)
            coordinator = LockCoordinator(factory, lock_timeout=LOCK_TIMEOUT, clock=clock)

            lock = await coordinator.acquire(document_id, 1, "worker-a")
            released = await coordinator.release(
                document_id,
                lock.attempt_id,
                AttemptOutcome.failed(
                    "worker-a",
                    error_kind=ErrorKind.VALIDATION,
                    error_message="schema violation",
                    terminal=True,
                ),
            )
            assert released.document_status == DocumentStatus.ERROR

            document = await load_document(factory, document_id)
            assert document.last_error_kind == ErrorKind.VALIDATION
            assert document.last_error_message == "schema violation"

            corrected = await coordinator.acquire(document_id, 2, "worker-b")
            assert corrected.acquired
            document = await load_document(factory, document_id)
            assert document.status == DocumentStatus.PENDING
            assert document.last_error_kind is None

    asyncio.run(_run())


@pytest.mark.integration
def test_cancelled_and_missing_documents(database_url, clock) -> None:
    async def _run() -> None:
        async with open_store(database_url) as factory:
            document_id = await seed_document(factory, status=DocumentStatus.CANCELLED)
            coordinator = LockCoordinator(factory, lock_timeout=LOCK_TIMEOUT, clock=clock)

            result = await coordinator.acquire(document_id, 1, "worker-a")
            assert not result.acquired
            assert result.reason == RejectReason.CANCELLED

            with pytest.raises(DocumentNotFoundError):
                await coordinator.acquire(str(uuid.uuid4()), 1, "worker-a")

            other_id = await seed_document(factory)
            with pytest.raises(AttemptNotFoundError):
                await coordinator.release(
                    other_id,
                    str(uuid.uuid4()),
                    AttemptOutcome.succeeded("worker-a", external_reference="REF-X"),
                )

    asyncio.run(_run())


@pytest.mark.integration
def test_stale_lock_is_taken_over_after_timeout(database_url, clock) -> None:
    async def _run() -> None:
        async with open_store(database_url) as factory:
            document_id = await seed_document(factory)
            coordinator = LockCoordinator(factory, lock_timeout=LOCK_TIMEOUT, clock=clock)

            crashed = await coordinator.acquire(document_id, 1, "worker-a")
            clock.advance(LOCK_TIMEOUT.total_seconds() + 1)
            takeover = await coordinator.acquire(document_id, 1, "worker-c")

            assert takeover.acquired
            assert takeover.attempt_id == crashed.attempt_id
            assert takeover.attempt_count == 2
            document = await load_document(factory, document_id)
            assert document.lock_owner == "worker-c"

    asyncio.run(_run())


@pytest.mark.integration
def test_late_success_after_takeover_is_reconciled_and_wins(database_url, clock) -> None:
    async def _run() -> None:
        async with open_store(database_url) as factory:
            document_id = await seed_document(factory)
            coordinator = LockCoordinator(factory, lock_timeout=LOCK_TIMEOUT, clock=clock)
            reaper = StaleStateReaper(factory, lock_timeout=LOCK_TIMEOUT, clock=clock)

            slow = await coordinator.acquire(document_id, 1, "worker-a")
            clock.advance(LOCK_TIMEOUT.total_seconds() + 1)
            await reaper.sweep()
            fresh = await coordinator.acquire(document_id, 1, "worker-c")
            assert fresh.acquired

            late = await coordinator.release(
                document_id,
                slow.attempt_id,
                AttemptOutcome.succeeded("worker-a", external_reference="REF-A"),
            )
            assert late.reconciled
            assert late.document_status == DocumentStatus.SUBMITTED

            second = await coordinator.release(
                document_id,
                fresh.attempt_id,
                AttemptOutcome.succeeded("worker-c", external_reference="REF-C"),
            )
            assert not second.applied
            assert second.external_reference == "REF-A"

            document = await load_document(factory, document_id)
            assert document.status == DocumentStatus.SUBMITTED
            assert document.external_reference == "REF-A"
            assert document.lock_owner is None

    asyncio.run(_run())


@pytest.mark.integration
def test_late_failure_from_previous_owner_is_ignored(database_url, clock) -> None:
    async def _run() -> None:
        async with open_store(database_url) as factory:
            document_id = await seed_document(factory)
            coordinator = LockCoordinator(factory, lock_timeout=LOCK_TIMEOUT, clock=clock)

            slow = await coordinator.acquire(document_id, 1, "worker-a")
            clock.advance(LOCK_TIMEOUT.total_seconds() + 1)
            await coordinator.acquire(document_id, 1, "worker-c")

            late = await coordinator.release(
                document_id,
                slow.attempt_id,
                AttemptOutcome.failed(
                    "worker-a",
                    error_kind=ErrorKind.CERTIFICATE,
                    error_message="certificate expired",
                    terminal=True,
                ),
            )

            assert not late.applied
            document = await load_document(factory, document_id)
            assert document.status == DocumentStatus.PENDING
            assert document.lock_owner == "worker-c"
            [attempt] = await load_attempts(factory, document_id)
            assert attempt.status == AttemptStatus.IN_PROGRESS
            assert attempt.worker_id == "worker-c"

    asyncio.run(_run())


@pytest.mark.integration
def test_takeover_by_other_version_expires_stale_attempt(database_url, clock) -> None:
    async def _run() -> None:
        async with open_store(database_url) as factory:
            document_id = await seed_document(factory)
            coordinator = LockCoordinator(factory, lock_timeout=LOCK_TIMEOUT, clock=clock)

            slow = await coordinator.acquire(document_id, 1, "worker-a")
            clock.advance(LOCK_TIMEOUT.total_seconds() + 1)
            fresh = await coordinator.acquire(document_id, 2, "worker-c")
            assert fresh.acquired
            assert fresh.attempt_id != slow.attempt_id

            attempts = await load_attempts(factory, document_id)
            in_progress = [a for a in attempts if a.status == AttemptStatus.IN_PROGRESS]
            assert [(a.content_version, a.worker_id) for a in in_progress] == [(2, "worker-c")]

            late = await coordinator.release(
                document_id,
                slow.attempt_id,
                AttemptOutcome.failed(
                    "worker-a",
                    error_kind=ErrorKind.CERTIFICATE,
                    error_message="certificate expired",
                    terminal=True,
                ),
            )

            assert not late.applied
            assert late.document_status == DocumentStatus.PENDING
            document = await load_document(factory, document_id)
            assert document.status == DocumentStatus.PENDING
            assert document.last_error_kind is None
            assert document.lock_owner == "worker-c"
            by_version = {a.content_version: a for a in await load_attempts(factory, document_id)}
            assert by_version[1].status == AttemptStatus.FAILED
            assert by_version[1].error_kind == ErrorKind.CERTIFICATE
            assert by_version[2].status == AttemptStatus.IN_PROGRESS

    asyncio.run(_run())


@pytest.mark.integration
def test_failure_after_reaper_sweep_stays_on_the_attempt(database_url, clock) -> None:
    async def _run() -> None:
        async with open_store(database_url) as factory:
            document_id = await seed_document(factory)
            coordinator = LockCoordinator(factory, lock_timeout=LOCK_TIMEOUT, clock=clock)

            slow = await coordinator.acquire(document_id, 1, "worker-a")
            clock.advance(LOCK_TIMEOUT.total_seconds() + 1)
            await StaleStateReaper(factory, lock_timeout=LOCK_TIMEOUT, clock=clock).sweep()

            late = await coordinator.release(
                document_id,
                slow.attempt_id,
                AttemptOutcome.failed(
                    "worker-a",
                    error_kind=ErrorKind.VALIDATION,
                    error_message="schema violation",
                    terminal=True,
                ),
            )

            assert not late.applied
            document = await load_document(factory, document_id)
            assert document.status == DocumentStatus.PENDING
            assert document.lock_owner is None
            [attempt] = await load_attempts(factory, document_id)
            assert attempt.status == AttemptStatus.FAILED
            assert attempt.error_message == "schema violation"

    asyncio.run(_run())


@pytest.mark.integration
def test_late_success_reconciles_document_already_in_error(database_url, clock) -> None:
    async def _run() -> None:
        async with open_store(database_url) as factory:
            document_id = await seed_document(factory)
            coordinator = LockCoordinator(factory, lock_timeout=LOCK_TIMEOUT, clock=clock)

            slow = await coordinator.acquire(document_id, 1, "worker-a")
            clock.advance(LOCK_TIMEOUT.total_seconds() + 1)
            await StaleStateReaper(factory, lock_timeout=LOCK_TIMEOUT, clock=clock).sweep()

            fresh = await coordinator.acquire(document_id, 1, "worker-c")
            failed = await coordinator.release(
                document_id,
                fresh.attempt_id,
                AttemptOutcome.failed(
                    "worker-c",
                    error_kind=ErrorKind.VALIDATION,
                    error_message="schema violation",
                    terminal=True,
                ),
            )
            assert failed.document_status == DocumentStatus.ERROR

            late = await coordinator.release(
                document_id,
                slow.attempt_id,
                AttemptOutcome.succeeded("worker-a", external_reference="REF-A", stamped_at=clock.now),
            )

            assert late.reconciled
            assert late.document_status == DocumentStatus.SUBMITTED
            assert late.external_reference == "REF-A"
            document = await load_document(factory, document_id)
            assert document.status == DocumentStatus.SUBMITTED
            assert document.external_reference == "REF-A"
            assert document.lock_owner is None
            assert document.lock_acquired_at is None
            [attempt] = await load_attempts(factory, document_id)
            assert attempt.status == AttemptStatus.SUCCESS
            assert attempt.worker_id == "worker-a"

    asyncio.run(_run())
