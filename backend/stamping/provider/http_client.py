"""HTTP client for the certification provider API."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import httpx

from stamping.core.logging import get_logger
from stamping.coordination.errors import ProviderError, ProviderTimeoutError
from stamping.provider.base import ProviderReceipt, ProviderRequest

logger = get_logger(__name__)

# Transport-level timeout (seconds); the orchestrator enforces its own call timeout on top.
DEFAULT_TIMEOUT = 30.0


class HttpSubmissionProvider:
    """
    Submits documents to the provider's REST endpoint.

    POST {base_url}/submissions with the document content; the idempotency
    key travels in the `Idempotency-Key` header so providers that support
    it can deduplicate too.  Expected success body::

        {"reference": "...", "stamped_at": "<ISO-8601>", ...}

    Any non-2xx status raises ProviderError with the status code and the
    provider's own `code`/`message`/`retryable` fields when present.
    """

    def __init__(
        self,
        base_url: str,
        *,
        user: str = "",
        password: str = "",
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._auth = (user, password) if user else None
        self._timeout = timeout
        self._transport = transport

    async def submit(self, request: ProviderRequest) -> ProviderReceipt:
        """Submit a single document. Returns the provider receipt."""
        url = f"{self.base_url}/submissions"
        headers = {
            "Content-Type": "application/json",
            "Idempotency-Key": request.idempotency_key,
        }
        body = {
            "document_id": request.document_id,
            "content": request.content,
            "mode": request.credentials.mode,
        }

        logger.info("Submitting document to provider", document_id=request.document_id, url=url)

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                auth=self._auth,
                transport=self._transport,
            ) as client:
                response = await client.post(url, headers=headers, json=body)
        except httpx.TimeoutException as exc:
            raise ProviderTimeoutError(
                f"Provider timeout: {exc}",
                document_id=request.document_id,
                timeout_seconds=self._timeout,
            ) from exc

        payload = _json_or_empty(response)

        if response.status_code not in (200, 201):
            raise ProviderError(
                payload.get("message") or f"Provider returned {response.status_code}",
                code=_str_or_none(payload.get("code")),
                status_code=response.status_code,
                retryable=payload.get("retryable") if isinstance(payload.get("retryable"), bool) else None,
                existing_reference=_str_or_none(payload.get("existing_reference")),
                response=payload,
                document_id=request.document_id,
            )

        reference = payload.get("reference")
        if not reference:
            raise ProviderError(
                "Provider response is missing the reference",
                status_code=response.status_code,
                response=payload,
                document_id=request.document_id,
            )

        return ProviderReceipt(
            external_reference=str(reference),
            stamped_at=_parse_dt(payload.get("stamped_at")) or datetime.now(timezone.utc),
            metadata=payload,
        )


def _json_or_empty(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {"body": response.text[:500]} if response.text else {}
    return data if isinstance(data, dict) else {"body": data}


def _str_or_none(value: object) -> str | None:
    return None if value is None else str(value)


def _parse_dt(value: object) -> datetime | None:
    if not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
