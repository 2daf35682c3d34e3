from __future__ import annotations

import pytest

from stamping.core.config import Settings
from stamping.core.constants import JobOutcome, RetryAction
from stamping.submission.retry_handler import EXHAUSTED_REASON, backoff_delay, plan_retry


def _settings(**overrides) -> Settings:
    values = {
        "MAX_SUBMISSION_RETRIES": 3,
        "RETRY_BACKOFF_BASE_SECONDS": 2.0,
        "RETRY_BACKOFF_MAX_SECONDS": 10.0,
        "CONTENTION_RETRY_DELAY_SECONDS": 15.0,
        "MAX_CONTENTION_RETRIES": 2,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.mark.unit
def test_backoff_doubles_and_caps() -> None:
    delays = [backoff_delay(n, base=2.0, cap=10.0) for n in range(5)]

    assert delays == [2.0, 4.0, 8.0, 10.0, 10.0]


@pytest.mark.unit
@pytest.mark.parametrize(
    "outcome",
    [
        JobOutcome.SUBMITTED,
        JobOutcome.ALREADY_SUBMITTED,
        JobOutcome.CANCELLED,
        JobOutcome.PERMANENT_FAILURE,
    ],
)
def test_final_outcomes_are_done(outcome: JobOutcome) -> None:
    decision = plan_retry(outcome, failure_retries=0, contention_retries=0, settings=_settings())

    assert decision.action == RetryAction.DONE
    assert not decision.should_retry


@pytest.mark.unit
def test_contention_requeues_without_consuming_failure_budget() -> None:
    decision = plan_retry(
        JobOutcome.RETRY_LATER,
        failure_retries=1,
        contention_retries=0,
        settings=_settings(),
    )

    assert decision.action == RetryAction.RETRY
    assert decision.countdown == 15.0
    assert decision.failure_retries == 1
    assert decision.contention_retries == 1


@pytest.mark.unit
def test_contention_budget_exhaustion_does_not_fail_document() -> None:
    decision = plan_retry(
        JobOutcome.RETRY_LATER,
        failure_retries=0,
        contention_retries=2,
        settings=_settings(),
    )

    assert decision.action == RetryAction.DONE


@pytest.mark.unit
def test_retryable_failure_backs_off_until_budget_exhausted() -> None:
    settings = _settings()
    countdowns = []
    failure_retries = 0
    while True:
        decision = plan_retry(
            JobOutcome.RETRYABLE_FAILURE,
            failure_retries=failure_retries,
            contention_retries=0,
            settings=settings,
        )
        if decision.action != RetryAction.RETRY:
            break
        countdowns.append(decision.countdown)
        failure_retries = decision.failure_retries

    assert countdowns == [2.0, 4.0, 8.0]
    assert decision.action == RetryAction.GIVE_UP
    assert decision.reason == EXHAUSTED_REASON
