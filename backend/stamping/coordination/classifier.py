"""
Error classifier — maps a raw provider failure to {kind, retryable}.

Pure: the result depends only on the error itself (type, message, code,
HTTP status, provider hint).  Retry history is the orchestrator's concern;
the "UNKNOWN retries only once" rule is enforced there.

Resolution order:
    1. Exception type (timeouts and connection failures are NETWORK)
    2. Message / provider code patterns, most specific first
    3. HTTP status code
    4. The provider's explicit retryable hint
    5. UNKNOWN
"""

from __future__ import annotations

import re
from dataclasses import dataclass

import httpx

from stamping.core.constants import ErrorKind
from stamping.coordination.errors import ProviderError, ProviderTimeoutError


RETRYABLE_KINDS: frozenset[ErrorKind] = frozenset(
    {
        ErrorKind.NETWORK,
        ErrorKind.PROVIDER_TEMPORARY,
        ErrorKind.UNKNOWN,
    }
)


@dataclass(frozen=True)
class ErrorClassification:
    """Classifier verdict for one failure."""

    kind: ErrorKind
    retryable: bool

    def to_dict(self) -> dict[str, object]:
        return {"kind": self.kind.value, "retryable": self.retryable}


def _compile(*patterns: str) -> re.Pattern[str]:
    return re.compile("|".join(patterns), re.IGNORECASE)


# Order matters: "invalid certificate" is CERTIFICATE, not VALIDATION.
MESSAGE_PATTERNS: tuple[tuple[ErrorKind, re.Pattern[str]], ...] = (
    (
        ErrorKind.NETWORK,
        _compile(
            r"time[d\s-]*out",
            r"econnrefused",
            r"econnreset",
            r"econnaborted",
            r"enotfound",
            r"etimedout",
            r"ehostunreach",
            r"socket hang up",
            r"network",
            r"connection",
        ),
    ),
    (
        ErrorKind.PROVIDER_TEMPORARY,
        _compile(
            r"\b(?:429|500|502|503|504)\b",
            r"busy",
            r"temporar(?:y|ily)",
            r"unavailable",
            r"overloaded",
            r"rate[\s-]?limit",
            r"too many requests",
            r"try again",
        ),
    ),
    (
        ErrorKind.CERTIFICATE,
        _compile(
            r"certificate",
            r"certificado",
            r"\bcsd\b",
            r"signing",
            r"signature",
            r"firma",
            r"sello",
            r"\b(?:302|303)\b",
        ),
    ),
    (
        ErrorKind.DUPLICATE,
        _compile(
            r"duplicate",
            r"duplicado",
            r"already (?:been )?(?:processed|stamped|submitted|certified)",
            r"previamente timbrado",
            r"\b307\b",
        ),
    ),
    (
        ErrorKind.VALIDATION,
        _compile(
            r"validation",
            r"validaci[oó]n",
            r"invalid",
            r"schema",
            r"malformed",
            r"\brfc\b",
            r"\b(?:301|305)\b",
        ),
    ),
    (
        ErrorKind.PROVIDER_PERMANENT,
        _compile(
            r"\b(?:400|401|403)\b",
            r"unauthori[sz]ed",
            r"forbidden",
            r"rejected",
        ),
    ),
)

STATUS_CODE_KINDS: dict[int, ErrorKind] = {
    408: ErrorKind.NETWORK,
    429: ErrorKind.PROVIDER_TEMPORARY,
    500: ErrorKind.PROVIDER_TEMPORARY,
    502: ErrorKind.PROVIDER_TEMPORARY,
    503: ErrorKind.PROVIDER_TEMPORARY,
    504: ErrorKind.PROVIDER_TEMPORARY,
    409: ErrorKind.DUPLICATE,
    422: ErrorKind.VALIDATION,
    400: ErrorKind.PROVIDER_PERMANENT,
    401: ErrorKind.PROVIDER_PERMANENT,
    403: ErrorKind.PROVIDER_PERMANENT,
    404: ErrorKind.PROVIDER_PERMANENT,
}

NETWORK_EXCEPTION_TYPES: tuple[type[BaseException], ...] = (
    ProviderTimeoutError,
    TimeoutError,
    ConnectionError,
    httpx.TransportError,
)


def _verdict(kind: ErrorKind) -> ErrorClassification:
    return ErrorClassification(kind=kind, retryable=kind in RETRYABLE_KINDS)


def _searchable_text(raw_error: BaseException | str) -> str:
    if isinstance(raw_error, str):
        return raw_error
    parts = [str(raw_error)]
    code = getattr(raw_error, "code", None)
    if code:
        parts.append(str(code))
    return " ".join(parts)


def classify(raw_error: BaseException | str) -> ErrorClassification:
    """
    Classify a provider failure.

    Args:
        raw_error: The exception raised by the provider call, or a bare
                   error message.

    Returns:
        ErrorClassification with the error kind and whether it may be retried.
    """
    if isinstance(raw_error, NETWORK_EXCEPTION_TYPES):
        return _verdict(ErrorKind.NETWORK)

    text = _searchable_text(raw_error)
    for kind, pattern in MESSAGE_PATTERNS:
        if pattern.search(text):
            return _verdict(kind)

    if isinstance(raw_error, ProviderError):
        if raw_error.status_code in STATUS_CODE_KINDS:
            return _verdict(STATUS_CODE_KINDS[raw_error.status_code])
        if raw_error.retryable is True:
            return _verdict(ErrorKind.PROVIDER_TEMPORARY)
        if raw_error.retryable is False:
            return _verdict(ErrorKind.PROVIDER_PERMANENT)

    return _verdict(ErrorKind.UNKNOWN)
