"""
Certification provider clients.

`build_provider(settings)` returns the HTTP client when a provider URL is
configured and the simulated provider otherwise (development only).
"""

from __future__ import annotations

from stamping.core.config import Settings
from stamping.coordination.errors import InvalidConfigurationError
from stamping.provider.base import (
    ProviderCredentials,
    ProviderReceipt,
    ProviderRequest,
    SubmissionProvider,
)
from stamping.provider.http_client import HttpSubmissionProvider
from stamping.provider.simulated import SimulatedSubmissionProvider

__all__ = [
    "HttpSubmissionProvider",
    "ProviderCredentials",
    "ProviderReceipt",
    "ProviderRequest",
    "SimulatedSubmissionProvider",
    "SubmissionProvider",
    "build_provider",
    "credentials_from_settings",
]


def credentials_from_settings(settings: Settings) -> ProviderCredentials:
    return ProviderCredentials(
        user=settings.PROVIDER_USER,
        password=settings.PROVIDER_PASSWORD,
        mode=settings.PROVIDER_MODE,
    )


def build_provider(settings: Settings) -> SubmissionProvider:
    """Pick the provider client for the configured environment."""
    if not settings.PROVIDER_BASE_URL:
        if settings.APP_ENV == "production":
            raise InvalidConfigurationError("PROVIDER_BASE_URL is required in production")
        return SimulatedSubmissionProvider()
    return HttpSubmissionProvider(
        settings.PROVIDER_BASE_URL,
        user=settings.PROVIDER_USER,
        password=settings.PROVIDER_PASSWORD,
        timeout=settings.PROVIDER_CALL_TIMEOUT_SECONDS,
    )
