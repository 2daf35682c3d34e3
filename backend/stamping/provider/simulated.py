"""
Simulated provider for local development (no PROVIDER_BASE_URL configured).

Accepts every document and returns a random reference.  Never use it
in production: references it issues are not real certifications.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from stamping.provider.base import ProviderReceipt, ProviderRequest


class SimulatedSubmissionProvider:
    """Always-accepting stand-in for the certification provider."""

    async def submit(self, request: ProviderRequest) -> ProviderReceipt:
        reference = str(uuid.uuid4()).upper()
        stamped_at = datetime.now(timezone.utc)
        return ProviderReceipt(
            external_reference=reference,
            stamped_at=stamped_at,
            metadata={
                "simulated": True,
                "message": "Simulated certification for development",
                "idempotency_key": request.idempotency_key,
                "timestamp": stamped_at.isoformat(),
            },
        )
