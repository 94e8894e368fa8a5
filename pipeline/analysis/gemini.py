"""
Gemini transport for the analysis pipeline.

Wraps google-generativeai calls with client-side rate limiting and translates
raw transport failures into the pipeline's error taxonomy exactly once, so
that retry logic and the session never look at error text.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions
from google.generativeai.types import generation_types

from pipeline.analysis.errors import (
    AnalysisError,
    ContentBlocked,
    ExtractionFailed,
    TransientKind,
    TransientServiceError,
)
from pipeline.analysis.rate_limiter import AdaptiveRateLimiter, RateLimitConfig

logger = logging.getLogger(__name__)


# Medical content must not be blocked by default harm filters
SAFETY_SETTINGS = [
    {"category": "HARM_CATEGORY_DANGEROUS_CONTENT", "threshold": "BLOCK_NONE"},
    {"category": "HARM_CATEGORY_HARASSMENT", "threshold": "BLOCK_NONE"},
    {"category": "HARM_CATEGORY_HATE_SPEECH", "threshold": "BLOCK_NONE"},
    {"category": "HARM_CATEGORY_SEXUALLY_EXPLICIT", "threshold": "BLOCK_NONE"},
]

BLOCKED_FINISH_REASONS = frozenset({"SAFETY", "PROHIBITED_CONTENT", "BLOCKLIST", "SPII"})

_RATE_LIMITED = (google_exceptions.ResourceExhausted, google_exceptions.TooManyRequests)
_OVERLOADED = (
    google_exceptions.ServiceUnavailable,
    google_exceptions.InternalServerError,
    google_exceptions.BadGateway,
)

# Raised by ChatSession when it inspects the response itself
_SDK_BLOCKS = (generation_types.BlockedPromptException, generation_types.StopCandidateException)
_TRANSPORT_ERRORS = (google_exceptions.GoogleAPICallError, OSError) + _SDK_BLOCKS


def classify_error(error: BaseException) -> AnalysisError:
    """Map a raw transport exception onto the error taxonomy."""
    if isinstance(error, AnalysisError):
        return error
    if isinstance(error, _SDK_BLOCKS):
        return _classify_block(error)
    if isinstance(error, _RATE_LIMITED):
        return TransientServiceError(TransientKind.RATE_LIMITED, str(error))
    if isinstance(error, _OVERLOADED):
        return TransientServiceError(TransientKind.OVERLOADED, str(error))
    if isinstance(error, (google_exceptions.DeadlineExceeded, TimeoutError)):
        return TransientServiceError(TransientKind.TIMEOUT, str(error))
    if isinstance(error, google_exceptions.GoogleAPICallError):
        return ExtractionFailed("service_error", str(error))
    if isinstance(error, OSError):
        return TransientServiceError(TransientKind.NETWORK, str(error))
    return ExtractionFailed("service_error", f"{type(error).__name__}: {error}")


def _enum_name(value: Any) -> str:
    if value is None:
        return ""
    return getattr(value, "name", None) or str(value)


def _classify_block(error: Exception) -> AnalysisError:
    detail = error.args[0] if error.args else None
    if isinstance(error, generation_types.BlockedPromptException):
        return ContentBlocked(f"prompt blocked: {_enum_name(getattr(detail, 'block_reason', None))}")
    finish_reason = _enum_name(getattr(detail, "finish_reason", None))
    if finish_reason in BLOCKED_FINISH_REASONS:
        return ContentBlocked(f"candidate stopped: {finish_reason}")
    return ExtractionFailed("unreadable", f"candidate stopped: {finish_reason}")


def response_text(response: Any) -> str:
    """
    Extract the text body of a generate_content response.

    Raises:
        ContentBlocked: the prompt or the candidate was stopped by safety filters.
        ExtractionFailed: the response carries no text (reason ``unreadable``).
    """
    feedback = getattr(response, "prompt_feedback", None)
    block_reason = getattr(feedback, "block_reason", None) if feedback is not None else None
    if block_reason:
        raise ContentBlocked(f"prompt blocked: {_enum_name(block_reason)}")

    candidates = list(getattr(response, "candidates", None) or [])
    if not candidates:
        raise ExtractionFailed("unreadable", "response has no candidates")

    candidate = candidates[0]
    content = getattr(candidate, "content", None)
    parts = getattr(content, "parts", None) or []
    text = "".join(getattr(part, "text", "") or "" for part in parts).strip()

    if not text:
        finish_reason = _enum_name(getattr(candidate, "finish_reason", None))
        if finish_reason in BLOCKED_FINISH_REASONS:
            raise ContentBlocked(f"candidate stopped: {finish_reason}")
        raise ExtractionFailed("unreadable", "empty response body")

    return text


def clean_json_response(text: str) -> str:
    """Remove markdown formatting from JSON response."""
    text = text.strip()
    if text.startswith('```json'):
        text = text[7:]
    elif text.startswith('```'):
        text = text[3:]
    if text.endswith('```'):
        text = text[:-3]
    return text.strip()


class GeminiClient:
    """
    Explicitly constructed Gemini client shared by the extraction,
    translation, chat and pharmacy components.

    ``model_factory`` builds GenerativeModel instances; tests inject a fake.
    """

    def __init__(
        self,
        model_name: str,
        grounding_model_name: Optional[str] = None,
        rate_limiter: Optional[AdaptiveRateLimiter] = None,
        model_factory: Optional[Callable[..., Any]] = None,
    ):
        self.model_name = model_name
        self.grounding_model_name = grounding_model_name or model_name
        self.rate_limiter = rate_limiter or AdaptiveRateLimiter()
        self._model_factory = model_factory or genai.GenerativeModel
        self._model = self._model_factory(model_name, safety_settings=SAFETY_SETTINGS)
        self._grounding_model = None

    @classmethod
    def from_settings(cls, settings) -> "GeminiClient":
        api_key = settings.gemini.api_key
        if not api_key:
            raise ValueError(
                "GEMINI_API_KEY not set. Please set the GEMINI__API_KEY environment variable "
                "or add it to your .env file."
            )
        genai.configure(api_key=api_key)

        limiter = AdaptiveRateLimiter(RateLimitConfig(
            requests_per_minute=settings.gemini.rate_limit,
            adaptive_backoff=settings.rate_limiting.adaptive_backoff,
            backoff_factor=settings.rate_limiting.backoff_factor,
            recovery_threshold=settings.rate_limiting.recovery_threshold,
            min_requests_per_minute=min(5, settings.gemini.rate_limit),
        ))
        return cls(
            model_name=settings.gemini.model,
            grounding_model_name=settings.gemini.grounding_model,
            rate_limiter=limiter,
        )

    async def generate_json(self, contents: List[Any], response_schema: Dict[str, Any]) -> str:
        """Structured call: returns the JSON text body, fences stripped."""
        response = await self._call(
            self._model.generate_content_async,
            contents,
            generation_config={
                "response_mime_type": "application/json",
                "response_schema": response_schema,
            },
            safety_settings=SAFETY_SETTINGS,
        )
        return clean_json_response(response_text(response))

    async def generate_grounded(self, prompt: str, tools: Any) -> Any:
        """Grounded call: returns the raw response so grounding metadata can be read."""
        if self._grounding_model is None:
            self._grounding_model = self._model_factory(self.grounding_model_name)
        return await self._call(self._grounding_model.generate_content_async, prompt, tools=tools)

    async def send_chat(
        self,
        system_instruction: str,
        history: List[Dict[str, Any]],
        message: str,
    ) -> Any:
        model = self._model_factory(
            self.model_name,
            system_instruction=system_instruction,
            safety_settings=SAFETY_SETTINGS,
        )
        chat = model.start_chat(history=history)
        return await self._call(chat.send_message_async, message)

    async def _call(self, method: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        await self.rate_limiter.acquire()
        try:
            response = await method(*args, **kwargs)
        except _TRANSPORT_ERRORS as e:
            error = classify_error(e)
            if isinstance(error, TransientServiceError) and error.kind is TransientKind.RATE_LIMITED:
                self.rate_limiter.report_rate_limit_error()
            logger.warning(f"Gemini call failed ({type(e).__name__}): {error}")
            raise error from e
        self.rate_limiter.report_success()
        return response
