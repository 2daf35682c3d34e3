from __future__ import annotations

import httpx
import pytest

from stamping.core.constants import ErrorKind
from stamping.coordination.classifier import classify
from stamping.coordination.errors import ProviderError, ProviderTimeoutError


@pytest.mark.unit
@pytest.mark.parametrize(
    ("message", "kind", "retryable"),
    [
        ("read ECONNRESET", ErrorKind.NETWORK, True),
        ("Request timed out after 30s", ErrorKind.NETWORK, True),
        ("socket hang up", ErrorKind.NETWORK, True),
        ("503 Service Unavailable", ErrorKind.PROVIDER_TEMPORARY, True),
        ("Too many requests, try again later", ErrorKind.PROVIDER_TEMPORARY, True),
        ("invalid certificate", ErrorKind.CERTIFICATE, False),
        ("Sello del emisor no válido", ErrorKind.CERTIFICATE, False),
        ("schema violation on element Total", ErrorKind.VALIDATION, False),
        ("RFC del receptor no existe", ErrorKind.VALIDATION, False),
        ("Document was already stamped", ErrorKind.DUPLICATE, False),
        ("401 Unauthorized", ErrorKind.PROVIDER_PERMANENT, False),
        ("something odd happened", ErrorKind.UNKNOWN, True),
    ],
)
def test_message_patterns(message: str, kind: ErrorKind, retryable: bool) -> None:
    result = classify(message)

    assert result.kind == kind
    assert result.retryable is retryable


@pytest.mark.unit
def test_exception_types_are_network() -> None:
    assert classify(ProviderTimeoutError("slow", timeout_seconds=1)).kind == ErrorKind.NETWORK
    assert classify(ConnectionResetError()).kind == ErrorKind.NETWORK
    assert classify(httpx.ConnectError("refused")).kind == ErrorKind.NETWORK
    assert classify(TimeoutError()).kind == ErrorKind.NETWORK


@pytest.mark.unit
def test_provider_code_participates_in_matching() -> None:
    error = ProviderError("Rejected by provider", code="307")

    assert classify(error).kind == ErrorKind.DUPLICATE


@pytest.mark.unit
@pytest.mark.parametrize(
    ("status_code", "kind"),
    [
        (408, ErrorKind.NETWORK),
        (409, ErrorKind.DUPLICATE),
        (422, ErrorKind.VALIDATION),
        (404, ErrorKind.PROVIDER_PERMANENT),
    ],
)
def test_status_code_fallback(status_code: int, kind: ErrorKind) -> None:
    error = ProviderError("Provider said no", status_code=status_code)

    assert classify(error).kind == kind


@pytest.mark.unit
def test_retryable_hint_when_nothing_else_matches() -> None:
    assert classify(ProviderError("odd", retryable=True)).kind == ErrorKind.PROVIDER_TEMPORARY
    assert classify(ProviderError("odd", retryable=False)).kind == ErrorKind.PROVIDER_PERMANENT
    assert classify(ProviderError("odd")).kind == ErrorKind.UNKNOWN


@pytest.mark.unit
def test_classification_is_pure() -> None:
    first = classify("gateway 502")
    second = classify("gateway 502")

    assert first == second
    assert first.to_dict() == {"kind": "PROVIDER_TEMPORARY", "retryable": True}
