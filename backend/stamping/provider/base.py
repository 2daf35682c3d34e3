"""
Contract of the external certification provider.

The coordination core never assumes the provider is idempotent or
atomic; it only relies on `submit()` either returning a receipt or
raising (ideally a ProviderError carrying a code/status/hint).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True)
class ProviderCredentials:
    """Provider access configuration."""

    user: str = ""
    password: str = ""
    mode: str = "test"


@dataclass(frozen=True)
class ProviderRequest:
    """One submission to the provider."""

    document_id: str
    content: str
    idempotency_key: str
    credentials: ProviderCredentials = field(default_factory=ProviderCredentials)


@dataclass(frozen=True)
class ProviderReceipt:
    """Successful provider response."""

    external_reference: str
    stamped_at: datetime
    metadata: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class SubmissionProvider(Protocol):
    """Anything that can certify a document."""

    async def submit(self, request: ProviderRequest) -> ProviderReceipt: ...
