"""Retry planning for submission jobs: contention re-queue and exponential backoff."""

from __future__ import annotations

from dataclasses import dataclass

from stamping.core.config import Settings
from stamping.core.constants import JobOutcome, RetryAction

EXHAUSTED_REASON = "retry budget exhausted"


@dataclass(frozen=True)
class RetryDecision:
    action: RetryAction
    countdown: float = 0.0
    failure_retries: int = 0
    contention_retries: int = 0
    reason: str = ""

    @property
    def should_retry(self) -> bool:
        return self.action == RetryAction.RETRY


def backoff_delay(retry_number: int, *, base: float = 2.0, cap: float = 3600.0) -> float:
    """Delay before the Nth failure retry (0-based): base, 2*base, 4*base, ... capped."""
    return min(base * (2 ** retry_number), cap)


def plan_retry(
    outcome: JobOutcome,
    *,
    failure_retries: int,
    contention_retries: int,
    settings: Settings,
) -> RetryDecision:
    """
    Decide what happens after an orchestrator run.

    RETRY_LATER (someone else holds the lock) is re-queued after a fixed
    delay and does not consume the failure budget.  RETRYABLE_FAILURE backs
    off exponentially until MAX_SUBMISSION_RETRIES, then gives up.
    """
    if outcome == JobOutcome.RETRY_LATER:
        if contention_retries >= settings.MAX_CONTENTION_RETRIES:
            # The lock holder (or the reaper) owns the document's fate now.
            return RetryDecision(
                action=RetryAction.DONE,
                failure_retries=failure_retries,
                contention_retries=contention_retries,
                reason="contention budget exhausted",
            )
        return RetryDecision(
            action=RetryAction.RETRY,
            countdown=settings.CONTENTION_RETRY_DELAY_SECONDS,
            failure_retries=failure_retries,
            contention_retries=contention_retries + 1,
            reason="lock held by another worker",
        )

    if outcome == JobOutcome.RETRYABLE_FAILURE:
        if failure_retries >= settings.MAX_SUBMISSION_RETRIES:
            return RetryDecision(
                action=RetryAction.GIVE_UP,
                failure_retries=failure_retries,
                contention_retries=contention_retries,
                reason=EXHAUSTED_REASON,
            )
        return RetryDecision(
            action=RetryAction.RETRY,
            countdown=backoff_delay(
                failure_retries,
                base=settings.RETRY_BACKOFF_BASE_SECONDS,
                cap=settings.RETRY_BACKOFF_MAX_SECONDS,
            ),
            failure_retries=failure_retries + 1,
            contention_retries=contention_retries,
            reason="retryable failure",
        )

    return RetryDecision(
        action=RetryAction.DONE,
        failure_retries=failure_retries,
        contention_retries=contention_retries,
        reason=outcome.value,
    )
