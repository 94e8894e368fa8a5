"""
Composition of the analysis services from settings.

The FastAPI app builds one ``Services`` at startup and keeps it on
``app.state``; routes receive the pieces through the ``get_*`` dependencies.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from backend.core.config import Settings
from pipeline.analysis.assistant import ChatAssistant
from pipeline.analysis.extraction import ExtractionClient
from pipeline.analysis.gemini import GeminiClient
from pipeline.analysis.history import HistoryStore
from pipeline.analysis.pharmacy import PharmacyLocator
from pipeline.analysis.retry import RetryPolicy
from pipeline.analysis.session import AnalysisSession
from pipeline.analysis.storage import build_history_backend
from pipeline.analysis.translation import TranslationClient

logger = logging.getLogger(__name__)


@dataclass
class Services:
    gemini: GeminiClient
    session: AnalysisSession
    pharmacies: PharmacyLocator
    assistant: ChatAssistant


def build_services(
    settings: Settings,
    gemini: Optional[GeminiClient] = None,
    history_backend=None,
) -> Services:
    """Wire clients, history and session. ``gemini``/``history_backend`` override for tests."""
    gemini = gemini or GeminiClient.from_settings(settings)
    retry_policy = RetryPolicy(
        max_attempts=settings.retry.max_attempts,
        base_delay=settings.retry.base_delay,
        timeout=settings.gemini.timeout,
    )
    history_backend = history_backend or build_history_backend(settings)

    session = AnalysisSession(
        extraction=ExtractionClient(gemini, retry_policy),
        translation=TranslationClient(gemini, retry_policy),
        history_store=HistoryStore(history_backend, capacity=settings.history.capacity),
        preview_dimension=settings.preprocessing.preview_dimension,
    )
    logger.info(
        f"Analysis services ready (model={gemini.model_name}, "
        f"history={settings.history.backend}, capacity={settings.history.capacity})"
    )
    return Services(
        gemini=gemini,
        session=session,
        pharmacies=PharmacyLocator(gemini, retry_policy),
        assistant=ChatAssistant(gemini, retry_policy),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_analysis_session(request: Request) -> AnalysisSession:
    return request.app.state.services.session
