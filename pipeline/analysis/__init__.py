"""
Medical Document Analysis Package.

Pipeline:
- preprocessing: Document validation, orientation, downscaling, previews
- extraction: Structured analysis using Gemini Vision
- translation: Re-translation of an existing analysis
- history: Bounded most-recent-first history store
- storage: SQL / Redis history backends
- session: Analysis state machine
- pharmacy: Grounded nearby pharmacy lookup
- assistant: Chat about the current analysis
- retry, rate_limiter: Transient failure handling
"""

from pipeline.analysis.schema import (
    DOSAGE_UNCLEAR,
    SUPPORTED_LANGUAGES,
    AnalysisResult,
    ChatMessage,
    ChatReply,
    Document,
    HistoryItem,
    LabResult,
    MedicineInfo,
    PatientProfile,
    Pharmacy,
)
from pipeline.analysis.errors import (
    AnalysisError,
    ContentBlocked,
    ContractViolation,
    ExtractionFailed,
    InputError,
    TransientKind,
    TransientServiceError,
    TranslationFailed,
    SessionBusy,
    InvalidTransition,
    HistoryItemNotFound,
)
from pipeline.analysis.retry import RetryPolicy
from pipeline.analysis.rate_limiter import AdaptiveRateLimiter
from pipeline.analysis.gemini import GeminiClient
from pipeline.analysis.preprocessing import prepare_document, build_preview_url
from pipeline.analysis.extraction import ExtractionClient
from pipeline.analysis.translation import TranslationClient
from pipeline.analysis.history import HistoryStore, MemoryHistoryBackend
from pipeline.analysis.storage import SqlHistoryBackend, RedisHistoryBackend, build_history_backend
from pipeline.analysis.session import AnalysisSession, SessionState
from pipeline.analysis.pharmacy import PharmacyLocator
from pipeline.analysis.assistant import ChatAssistant

__all__ = [
    # Result schema
    'DOSAGE_UNCLEAR',
    'SUPPORTED_LANGUAGES',
    'AnalysisResult',
    'MedicineInfo',
    'LabResult',
    'PatientProfile',
    'HistoryItem',
    'Document',
    'Pharmacy',
    'ChatMessage',
    'ChatReply',

    # Errors
    'AnalysisError',
    'TransientKind',
    'TransientServiceError',
    'ExtractionFailed',
    'ContentBlocked',
    'ContractViolation',
    'InputError',
    'TranslationFailed',
    'SessionBusy',
    'InvalidTransition',
    'HistoryItemNotFound',

    # Transport
    'RetryPolicy',
    'AdaptiveRateLimiter',
    'GeminiClient',

    # Pipeline
    'prepare_document',
    'build_preview_url',
    'ExtractionClient',
    'TranslationClient',

    # History
    'HistoryStore',
    'MemoryHistoryBackend',
    'SqlHistoryBackend',
    'RedisHistoryBackend',
    'build_history_backend',

    # Session
    'AnalysisSession',
    'SessionState',

    # Extras
    'PharmacyLocator',
    'ChatAssistant',
]
