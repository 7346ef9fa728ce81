"""
Centralized Gemini client and gateway factory.

The gateway is built lazily on first use so the service can start (and the
tests can run) without credentials.
"""

from __future__ import annotations

from functools import lru_cache

from app.core.exceptions import ConfigurationError
from app.core.settings import settings
from app.services.gateway import GenerationGateway
from app.services.vertex_gemini import GeminiClient


class GeminiNotConfiguredError(ConfigurationError):
    """Raised when Gemini API credentials are missing."""

    def __init__(self) -> None:
        super().__init__(
            "Gemini is not configured. Set GEMINI_API_KEY or GOOGLE_CLOUD_PROJECT.",
            detail="image generation service is not configured",
        )


def build_gemini_client() -> GeminiClient:
    """Build a GeminiClient from application settings.

    Raises:
        GeminiNotConfiguredError: If neither API key nor GCP project is set.
    """
    if not settings.google_cloud_project and not settings.gemini_api_key:
        raise GeminiNotConfiguredError()

    return GeminiClient(
        project=settings.google_cloud_project,
        location=settings.google_cloud_location,
        api_key=settings.gemini_api_key,
        text_model=settings.gemini_text_model,
        image_model=settings.gemini_image_model,
        timeout_seconds=settings.gemini_timeout_seconds,
        circuit_breaker_threshold=settings.gemini_circuit_breaker_threshold,
        circuit_breaker_timeout=settings.gemini_circuit_breaker_timeout,
    )


@lru_cache(maxsize=1)
def get_gateway() -> GenerationGateway:
    """Process-wide gateway; the circuit breakers are shared by every session."""
    return GenerationGateway(build_gemini_client(), max_characters=settings.max_characters)
