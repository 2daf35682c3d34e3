"""Shared constants and enums used across the application."""

from enum import StrEnum


class DocumentStatus(StrEnum):
    """Submission status of a stampable document."""

    PENDING = "PENDING"
    SUBMITTED = "SUBMITTED"
    ERROR = "ERROR"
    CANCELLED = "CANCELLED"


class AttemptStatus(StrEnum):
    """Lifecycle of a submission attempt record."""

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"


class ErrorKind(StrEnum):
    """Classification of a provider failure."""

    NETWORK = "NETWORK"
    PROVIDER_TEMPORARY = "PROVIDER_TEMPORARY"
    VALIDATION = "VALIDATION"
    CERTIFICATE = "CERTIFICATE"
    DUPLICATE = "DUPLICATE"
    PROVIDER_PERMANENT = "PROVIDER_PERMANENT"
    UNKNOWN = "UNKNOWN"


class RejectReason(StrEnum):
    """Why a lock acquisition was refused. Control signals, not errors."""

    ALREADY_SUBMITTED = "ALREADY_SUBMITTED"
    IN_PROGRESS = "IN_PROGRESS"
    LOCKED = "LOCKED"
    CANCELLED = "CANCELLED"


class OrchestratorState(StrEnum):
    """States a submission job moves through."""

    START = "START"
    PRECHECK = "PRECHECK"
    LOCK_WAIT = "LOCK_WAIT"
    CALLING = "CALLING"
    COMMIT = "COMMIT"
    DONE = "DONE"


class JobOutcome(StrEnum):
    """Final outcome of one orchestrator run, as seen by the scheduler."""

    SUBMITTED = "SUBMITTED"
    ALREADY_SUBMITTED = "ALREADY_SUBMITTED"
    CANCELLED = "CANCELLED"
    RETRY_LATER = "RETRY_LATER"
    RETRYABLE_FAILURE = "RETRYABLE_FAILURE"
    PERMANENT_FAILURE = "PERMANENT_FAILURE"


class RetryAction(StrEnum):
    """What the scheduler does after a job run."""

    DONE = "DONE"
    RETRY = "RETRY"
    GIVE_UP = "GIVE_UP"
