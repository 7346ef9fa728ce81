import uuid
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable

from app.core.metrics import track_gemini_call
from google import genai
from google.genai import types

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Custom Exception Classes for Graceful Error Handling
# ---------------------------------------------------------------------------


class GeminiError(Exception):
    """Base exception for Gemini-related errors."""

    def __init__(self, message: str, request_id: str | None = None, model: str | None = None):
        super().__init__(message)
        self.request_id = request_id
        self.model = model


class GeminiRateLimitError(GeminiError):
    """Raised when rate limit is exceeded."""

    pass


class GeminiContentFilterError(GeminiError):
    """Raised when content is blocked by safety filters."""

    def __init__(
        self,
        message: str,
        request_id: str | None = None,
        model: str | None = None,
        blocked_categories: list[str] | None = None,
    ):
        super().__init__(message, request_id, model)
        self.blocked_categories = blocked_categories or []


class GeminiTimeoutError(GeminiError):
    """Raised when request times out."""

    pass


class GeminiCircuitOpenError(GeminiError):
    """Raised when circuit breaker is open (too many failures)."""

    def __init__(self, message: str, retry_after: datetime | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class GeminiModelUnavailableError(GeminiError):
    """Raised when the model is unavailable."""

    pass


class GeminiEmptyResponseError(GeminiError):
    """Raised when a response carries no usable text or image part."""

    pass


# ---------------------------------------------------------------------------
# Circuit Breaker Implementation
# ---------------------------------------------------------------------------


@dataclass
class CircuitBreakerState:
    """Tracks circuit breaker state for a specific operation type."""

    failure_count: int = 0
    last_failure_time: datetime | None = None
    circuit_open_until: datetime | None = None
    consecutive_successes: int = 0

    # Configuration
    failure_threshold: int = 5
    recovery_timeout_seconds: int = 60
    half_open_success_threshold: int = 2

    def record_failure(self) -> None:
        """Record a failure and potentially open the circuit."""
        self.failure_count += 1
        self.consecutive_successes = 0
        self.last_failure_time = datetime.now(timezone.utc)

        if self.failure_count >= self.failure_threshold:
            self.circuit_open_until = datetime.now(timezone.utc) + timedelta(
                seconds=self.recovery_timeout_seconds
            )
            logger.warning(
                "Circuit breaker OPEN: %d failures, retry after %s",
                self.failure_count,
                self.circuit_open_until.isoformat(),
            )

    def record_success(self) -> None:
        """Record a success and potentially close the circuit."""
        self.consecutive_successes += 1

        if self.is_half_open and self.consecutive_successes >= self.half_open_success_threshold:
            self.reset()
            logger.info("Circuit breaker CLOSED: recovered after %d successes", self.consecutive_successes)
        elif not self.is_half_open and not self.is_open:
            self.failure_count = 0

    def reset(self) -> None:
        """Reset the circuit breaker to closed state."""
        self.failure_count = 0
        self.last_failure_time = None
        self.circuit_open_until = None
        self.consecutive_successes = 0

    @property
    def is_open(self) -> bool:
        """Check if circuit is fully open (not allowing any requests)."""
        if self.circuit_open_until is None:
            return False
        return datetime.now(timezone.utc) < self.circuit_open_until

    @property
    def is_half_open(self) -> bool:
        """Check if circuit is half-open (allowing test requests)."""
        if self.circuit_open_until is None:
            return False
        return datetime.now(timezone.utc) >= self.circuit_open_until and self.failure_count > 0

    def check_circuit(self) -> None:
        """Check if request is allowed; raise if circuit is open."""
        if self.is_open:
            raise GeminiCircuitOpenError(
                f"Circuit breaker is open due to {self.failure_count} consecutive failures. "
                f"Retry after {self.circuit_open_until.isoformat() if self.circuit_open_until else 'unknown'}",
                retry_after=self.circuit_open_until,
            )


_PORTRAIT_ASPECT_RATIO = "3:4"
_IMAGE_RESPONSE_MODALITIES = ["IMAGE", "TEXT"]


class GeminiClient:
    """Async transport over google-genai.

    One call per method, no retries and no model fallback: a failed call is
    classified and raised so the caller decides whether to try again.
    """

    def __init__(
        self,
        project: str | None,
        location: str | None,
        api_key: str | None,
        text_model: str,
        image_model: str,
        timeout_seconds: float = 120.0,
        circuit_breaker_threshold: int = 5,
        circuit_breaker_timeout: int = 60,
    ):
        if not api_key and (not project or not location):
            raise RuntimeError(
                "Either GEMINI_API_KEY or both GOOGLE_CLOUD_PROJECT and GOOGLE_CLOUD_LOCATION must be configured"
            )

        self._text_model = text_model
        self._image_model = image_model
        self._timeout_seconds = timeout_seconds

        self.last_request_id: str | None = None
        self.last_model: str | None = None
        self.last_error_type: str | None = None

        # Circuit breakers for different operation types
        self._circuit_breakers: dict[str, CircuitBreakerState] = {
            request_type: CircuitBreakerState(
                failure_threshold=circuit_breaker_threshold,
                recovery_timeout_seconds=circuit_breaker_timeout,
            )
            for request_type in ("generate_json", "generate_images", "generate_image_content")
        }

        http_options = types.HttpOptions(timeout=int(timeout_seconds * 1000))
        if project and location:
            self._client = genai.Client(
                vertexai=True, project=project, location=location, http_options=http_options
            )
        else:
            self._client = genai.Client(api_key=api_key, http_options=http_options)

    def _classify_error(self, exc: Exception, error_text: str) -> str:
        """Classify a provider exception into one of the error families."""
        if "RESOURCE_EXHAUSTED" in error_text or "429" in error_text:
            return "rate_limit"
        if "SAFETY" in error_text.upper() or "blocked" in error_text.lower():
            return "content_filter"
        if "timeout" in error_text.lower() or "deadline" in error_text.lower():
            return "timeout"
        if "unavailable" in error_text.lower() or "503" in error_text:
            return "model_unavailable"
        if "invalid" in error_text.lower() or "400" in error_text:
            return "invalid_request"
        return "unknown"

    def _check_response_safety(
        self,
        response: types.GenerateContentResponse,
        request_id: str,
        model_name: str,
    ) -> None:
        """Check if response was blocked by safety filters."""
        candidate = (response.candidates or [None])[0]
        if candidate is None:
            return

        finish_reason = getattr(candidate, "finish_reason", None)
        if finish_reason and "SAFETY" in str(finish_reason).upper():
            blocked_categories = []
            safety_ratings = getattr(candidate, "safety_ratings", None)
            if safety_ratings:
                for rating in safety_ratings:
                    if getattr(rating, "blocked", False):
                        category = getattr(rating, "category", "UNKNOWN")
                        blocked_categories.append(str(category))

            raise GeminiContentFilterError(
                f"Content blocked by safety filters: {blocked_categories}",
                request_id=request_id,
                model=model_name,
                blocked_categories=blocked_categories,
            )

    async def _call(
        self,
        func: Callable[[], Awaitable[Any]],
        model_name: str,
        request_type: str,
    ) -> Any:
        """Run one provider call behind the circuit breaker and classify its failure."""
        circuit_breaker = self._circuit_breakers[request_type]
        circuit_breaker.check_circuit()

        request_id = str(uuid.uuid4())
        self.last_request_id = request_id
        self.last_model = model_name

        try:
            async with track_gemini_call(request_type):
                response = await func()
                if isinstance(response, types.GenerateContentResponse):
                    self._check_response_safety(response, request_id, model_name)
        except GeminiContentFilterError:
            self.last_error_type = "content_filter"
            circuit_breaker.record_failure()
            raise
        except Exception as exc:  # noqa: BLE001
            error_type = self._classify_error(exc, str(exc))
            self.last_error_type = error_type
            circuit_breaker.record_failure()
            logger.warning(
                "gemini.%s failed request_id=%s model=%s type=%s error=%s",
                request_type,
                request_id,
                model_name,
                error_type,
                repr(exc),
            )
            if error_type == "rate_limit":
                raise GeminiRateLimitError(
                    "Rate limit exceeded", request_id=request_id, model=model_name
                ) from exc
            if error_type == "content_filter":
                raise GeminiContentFilterError(
                    f"Content blocked: {exc}", request_id=request_id, model=model_name
                ) from exc
            if error_type == "timeout":
                raise GeminiTimeoutError(
                    "Request timed out", request_id=request_id, model=model_name
                ) from exc
            if error_type == "model_unavailable":
                raise GeminiModelUnavailableError(
                    f"Model {model_name} is unavailable", request_id=request_id, model=model_name
                ) from exc
            raise GeminiError(
                f"Gemini {request_type} failed: {exc!r}", request_id=request_id, model=model_name
            ) from exc

        if getattr(response, "response_id", None):
            self.last_request_id = response.response_id
        self.last_error_type = None
        circuit_breaker.record_success()
        return response

    def _extract_text_from_response(self, response: types.GenerateContentResponse, model_name: str) -> str:
        candidate = (response.candidates or [None])[0]
        if candidate is None or not candidate.content or not candidate.content.parts:
            raise GeminiEmptyResponseError("Gemini returned empty content", model=model_name)

        texts: list[str] = []
        for part in candidate.content.parts:
            text = part.text
            if text:
                texts.append(text)

        if not texts:
            raise GeminiEmptyResponseError("Gemini returned no textual content", model=model_name)

        return "\n".join(texts).strip()

    def _extract_image(self, response: types.GenerateContentResponse, model_name: str) -> tuple[bytes, str]:
        candidate = (response.candidates or [None])[0]
        if candidate is None or not candidate.content or not candidate.content.parts:
            raise GeminiEmptyResponseError("Gemini returned empty content", model=model_name)

        for part in candidate.content.parts:
            inline_data = part.inline_data
            if inline_data and inline_data.data:
                mime_type = inline_data.mime_type or "image/png"
                return inline_data.data, mime_type

        raise GeminiEmptyResponseError("Gemini returned no image data", model=model_name)

    async def generate_json(
        self,
        prompt: str,
        response_schema: dict,
        model: str | None = None,
    ) -> str:
        """Generate structured text in JSON mode.

        Args:
            prompt: Text prompt
            response_schema: JSON schema the response must follow
            model: Optional model override

        Returns:
            The raw response text (expected to be JSON)
        """
        model_name = model or self._text_model
        response = await self._call(
            func=lambda: self._client.aio.models.generate_content(
                model=model_name,
                contents=[prompt],
                config=types.GenerateContentConfig(
                    response_mime_type="application/json",
                    response_schema=response_schema,
                ),
            ),
            model_name=model_name,
            request_type="generate_json",
        )
        return self._extract_text_from_response(response, model_name)

    async def generate_images(self, prompt: str, model: str) -> tuple[bytes, str]:
        """Text-to-image through the image generation models (one 3:4 PNG)."""
        response = await self._call(
            func=lambda: self._client.aio.models.generate_images(
                model=model,
                prompt=prompt,
                config=types.GenerateImagesConfig(
                    number_of_images=1,
                    output_mime_type="image/png",
                    aspect_ratio=_PORTRAIT_ASPECT_RATIO,
                ),
            ),
            model_name=model,
            request_type="generate_images",
        )
        generated = response.generated_images or []
        if not generated or generated[0].image is None or not generated[0].image.image_bytes:
            raise GeminiEmptyResponseError("No image was generated.", model=model)
        image = generated[0].image
        return image.image_bytes, image.mime_type or "image/png"

    async def generate_image_content(
        self,
        prompt: str,
        images: list[tuple[bytes, str]] | None = None,
        model: str | None = None,
    ) -> tuple[bytes, str]:
        """Multimodal image output: input images first, then the instruction text.

        Args:
            prompt: Instruction text, placed after all image parts
            images: Ordered list of (image_bytes, mime_type) inputs
            model: Optional model override

        Returns:
            Tuple of (image_bytes, mime_type) from the first inline image part
        """
        model_name = model or self._image_model

        contents: list = [
            types.Part.from_bytes(data=img_bytes, mime_type=mime_type)
            for img_bytes, mime_type in (images or [])
        ]
        contents.append(prompt)

        response = await self._call(
            func=lambda: self._client.aio.models.generate_content(
                model=model_name,
                contents=contents,
                config=types.GenerateContentConfig(response_modalities=_IMAGE_RESPONSE_MODALITIES),
            ),
            model_name=model_name,
            request_type="generate_image_content",
        )
        return self._extract_image(response, model_name)

    def get_circuit_breaker_status(self) -> dict[str, dict]:
        """Get current status of all circuit breakers."""
        status = {}
        for op_type, cb in self._circuit_breakers.items():
            status[op_type] = {
                "failure_count": cb.failure_count,
                "is_open": cb.is_open,
                "is_half_open": cb.is_half_open,
                "circuit_open_until": cb.circuit_open_until.isoformat() if cb.circuit_open_until else None,
                "consecutive_successes": cb.consecutive_successes,
            }
        return status

    def reset_circuit_breaker(self, operation_type: str | None = None) -> None:
        """Reset circuit breaker(s) to closed state.

        Args:
            operation_type: Specific operation to reset, or None for all
        """
        if operation_type:
            if operation_type in self._circuit_breakers:
                self._circuit_breakers[operation_type].reset()
                logger.info("Circuit breaker reset for %s", operation_type)
        else:
            for cb in self._circuit_breakers.values():
                cb.reset()
            logger.info("All circuit breakers reset")
