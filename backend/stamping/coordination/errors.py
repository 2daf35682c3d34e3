"""
Domain-specific exception hierarchy for submission coordination.

All exceptions inherit from StampingError so callers can catch broadly
or narrowly as needed.  Each exception carries structured context
(document ID, details) for logging/debugging.

Lock contention and "already submitted" are NOT exceptions: they are
returned as `LockRejected` values by the lock coordinator.
"""

from __future__ import annotations

from typing import Any


class StampingError(Exception):
    """Base exception for all stamping errors."""

    def __init__(
        self,
        message: str,
        *,
        document_id: str | None = None,
        details: dict | None = None,
    ) -> None:
        self.document_id = document_id
        self.details = details or {}
        super().__init__(message)


class DocumentNotFoundError(StampingError):
    """No stampable document with the given ID."""
    pass


class AttemptNotFoundError(StampingError):
    """No submission attempt with the given ID or key."""
    pass


class InvalidConfigurationError(StampingError):
    """Provider or coordination settings are unusable."""
    pass


class ProviderError(StampingError):
    """
    The certification provider rejected or failed a submission.

    Raw input for the error classifier: `code` is the provider's own
    error code, `status_code` the HTTP status (if any), `retryable` an
    explicit hint when the provider exposes one, and `existing_reference`
    the reference of a previously accepted submission when the provider
    reports a duplicate.
    """

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        status_code: int | None = None,
        retryable: bool | None = None,
        existing_reference: str | None = None,
        response: dict[str, Any] | None = None,
        **kwargs,
    ) -> None:
        self.code = code
        self.status_code = status_code
        self.retryable = retryable
        self.existing_reference = existing_reference
        self.response = response or {}
        super().__init__(message, **kwargs)


class ProviderTimeoutError(ProviderError):
    """The provider call exceeded the call-level timeout."""

    def __init__(self, message: str, *, timeout_seconds: float | None = None, **kwargs) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__(message, **kwargs)
