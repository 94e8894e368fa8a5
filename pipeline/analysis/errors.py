"""
Error taxonomy for the document-analysis pipeline.

Raw transport errors are translated into these types once, at the Gemini
client boundary. Everything downstream (retry, session) works with the
types only and never inspects error text.
"""

from enum import Enum
from typing import Optional


class TransientKind(str, Enum):
    """Sub-kind of a retryable service failure."""
    OVERLOADED = "overloaded"
    RATE_LIMITED = "rate_limited"
    NETWORK = "network"
    TIMEOUT = "timeout"


BUSY_MESSAGE = "The analysis service is busy right now. Please try again shortly."
RATE_LIMITED_MESSAGE = "Too many requests were sent. Please wait a minute before trying again."
UNREADABLE_MESSAGE = "Analysis failed. The image might be too blurry or blocked."
BLOCKED_MESSAGE = (
    "This document could not be processed. "
    "Please ensure it is a valid, clear medical document."
)
CONTRACT_MESSAGE = "Analysis failed. Please try again with a clearer image."
INTERRUPTED_MESSAGE = "The analysis was interrupted. Please try again."

_REASON_MESSAGES = {
    TransientKind.OVERLOADED.value: BUSY_MESSAGE,
    TransientKind.NETWORK.value: BUSY_MESSAGE,
    TransientKind.TIMEOUT.value: BUSY_MESSAGE,
    TransientKind.RATE_LIMITED.value: RATE_LIMITED_MESSAGE,
    "unreadable": UNREADABLE_MESSAGE,
}


class AnalysisError(Exception):
    """Base exception for all analysis pipeline errors."""

    user_message = CONTRACT_MESSAGE


class TransientServiceError(AnalysisError):
    """Overload, rate limit, network or timeout failure. Eligible for retry."""

    def __init__(self, kind: TransientKind, detail: str = ""):
        self.kind = TransientKind(kind)
        self.detail = detail
        super().__init__(f"{self.kind.value}: {detail}" if detail else self.kind.value)

    @property
    def user_message(self) -> str:
        return _REASON_MESSAGES[self.kind.value]


class ExtractionFailed(AnalysisError):
    """
    The remote call produced no usable result.

    ``reason`` is ``unreadable`` for an empty response, one of the
    TransientKind values when retries were exhausted, or ``service_error``
    for a terminal service failure.
    """

    def __init__(self, reason: str, detail: str = ""):
        self.reason = reason
        self.detail = detail
        super().__init__(f"{reason}: {detail}" if detail else reason)

    @property
    def user_message(self) -> str:
        return _REASON_MESSAGES.get(self.reason, CONTRACT_MESSAGE)

    @classmethod
    def from_transient(cls, error: TransientServiceError) -> "ExtractionFailed":
        return cls(error.kind.value, error.detail)


class ContentBlocked(AnalysisError):
    """The service refused the input on policy grounds. Never retried."""

    user_message = BLOCKED_MESSAGE


class ContractViolation(AnalysisError):
    """The response did not conform to the result schema. Never retried."""

    user_message = CONTRACT_MESSAGE


class InputError(AnalysisError):
    """Caller-side problem detected before any remote call."""

    def __init__(self, message: str):
        super().__init__(message)
        self.user_message = message


class TranslationFailed(AnalysisError):
    """Re-translation of an existing result failed; the existing result stands."""

    def __init__(self, language: str, cause: Optional[AnalysisError] = None):
        self.language = language
        self.cause = cause
        super().__init__(f"translation to {language} failed: {cause}")

    @property
    def user_message(self) -> str:
        return f"Translation to {self.language} failed. Showing the previous analysis."


class StaleResponse(AnalysisError):
    """A response arrived for a superseded session generation. Discarded silently."""


class HistoryPersistenceError(Exception):
    """Reading or writing the history backend failed."""


class SessionError(Exception):
    """Base exception for invalid session usage."""


class SessionBusy(SessionError):
    """A submission or translation is already in flight."""


class InvalidTransition(SessionError):
    """The requested operation is not valid in the current session state."""


class HistoryItemNotFound(SessionError, LookupError):
    """No history item has the requested id."""
