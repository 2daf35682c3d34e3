"""
Idempotency keys — SHA-256 over the canonical JSON form of a unit of work.
"""

from __future__ import annotations

import hashlib
import json
import uuid
from typing import Any


def canonical_payload(
    document_id: uuid.UUID | str,
    content_version: int,
    context: dict[str, Any] | None = None,
) -> str:
    """Deterministic JSON for (document, version, context). Key order never matters."""
    data = {
        "document_id": str(document_id).lower(),
        "content_version": int(content_version),
        "context": context or {},
    }
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)


def generate_idempotency_key(
    document_id: uuid.UUID | str,
    content_version: int,
    context: dict[str, Any] | None = None,
) -> str:
    """Stable 64-char hex key identifying one logical submission."""
    payload = canonical_payload(document_id, content_version, context)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
