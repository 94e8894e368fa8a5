"""
Analysis session: the state machine that owns the current result.

    IDLE -> SUBMITTING -> READY -> TRANSLATING -> READY
    any failed submission -> FAILED -> IDLE (acknowledge or resubmit)

Only one submission or translation is in flight at a time. Every operation
that replaces the current result takes a new generation; a completion
carrying an older generation is a stale response and is dropped.
"""

import logging
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pipeline.analysis.errors import (
    AnalysisError,
    HistoryItemNotFound,
    INTERRUPTED_MESSAGE,
    HistoryPersistenceError,
    InvalidTransition,
    SessionBusy,
    StaleResponse,
    TranslationFailed,
)
from pipeline.analysis.extraction import ExtractionClient, check_language
from pipeline.analysis.history import HistoryStore
from pipeline.analysis.preprocessing import build_preview_url
from pipeline.analysis.schema import (
    DEFAULT_LANGUAGE,
    AnalysisResult,
    Document,
    HistoryItem,
    PatientProfile,
    now_ms,
)
from pipeline.analysis.translation import TranslationClient

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    SUBMITTING = "submitting"
    READY = "ready"
    TRANSLATING = "translating"
    FAILED = "failed"


PENDING_STATES = frozenset({SessionState.SUBMITTING, SessionState.TRANSLATING})


def new_history_id() -> str:
    return f"{now_ms()}-{uuid4().hex[:8]}"


class AnalysisSession:
    """
    Orchestrates extraction, translation and history for one user.

    Collaborators are passed in; the composer owns their lifecycle.

    Usage:
        session = AnalysisSession(extraction, translation, HistoryStore(backend))
        await session.load_history()
        await session.submit(document, language="Hindi")
        await session.change_language("Tamil")
    """

    def __init__(
        self,
        extraction: ExtractionClient,
        translation: TranslationClient,
        history_store: HistoryStore,
        language: str = DEFAULT_LANGUAGE,
        preview_dimension: int = 512,
    ):
        self.extraction = extraction
        self.translation = translation
        self.history_store = history_store
        self.preview_dimension = preview_dimension

        self.state = SessionState.IDLE
        self.language = check_language(language)
        self.profile: Optional[PatientProfile] = None

        self.current: Optional[AnalysisResult] = None
        self.preview_url: Optional[str] = None
        self.file_type: Optional[str] = None
        self.error_message: Optional[str] = None
        self.notice: Optional[str] = None
        self.history: List[HistoryItem] = []

        self._generation = 0
        self._history_dirty = False

    @property
    def pending(self) -> bool:
        return self.state in PENDING_STATES

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def load_history(self) -> List[HistoryItem]:
        """Restore persisted history. A read failure leaves an empty history."""
        try:
            self.history = await self.history_store.load_all()
        except HistoryPersistenceError as e:
            logger.warning(f"Could not load history, starting empty: {e}")
            self.history = []
        logger.info(f"Loaded {len(self.history)} history item(s)")
        return self.history

    async def submit(
        self,
        document: Document,
        language: Optional[str] = None,
        patient_context: Optional[PatientProfile] = None,
    ) -> Optional[AnalysisResult]:
        """
        Analyze a new document.

        A pending translation is superseded. A failed session is implicitly
        acknowledged. Returns the new result, or None when the analysis failed
        (see ``error_message``) or was superseded.

        Raises:
            SessionBusy: another submission is in flight.
            InputError: unsupported language.
        """
        if self.state is SessionState.SUBMITTING:
            raise SessionBusy("An analysis is already in progress.")
        if language is not None:
            self.language = check_language(language)
        if patient_context is not None:
            self.profile = patient_context

        generation = self._advance(SessionState.SUBMITTING)
        self.current = None
        self.preview_url = None
        self.file_type = None
        self.error_message = None
        self.notice = None

        try:
            return await self._submit(document, generation)
        except StaleResponse as e:
            logger.debug(f"Discarded stale response: {e}")
            return None
        except BaseException:
            # Cancellation or an unexpected error must not leave the session busy
            if generation == self._generation and self.state is SessionState.SUBMITTING:
                self.state = SessionState.FAILED
                self.error_message = INTERRUPTED_MESSAGE
            raise

    async def _submit(self, document: Document, generation: int) -> Optional[AnalysisResult]:
        try:
            preview_url = build_preview_url(document, self.preview_dimension)
            result = await self.extraction.analyze(document, self.language, self.profile)
        except AnalysisError as e:
            self._check_generation(generation, "extraction failure")
            self.state = SessionState.FAILED
            self.error_message = e.user_message
            logger.warning(f"Analysis failed ({type(e).__name__}): {e}")
            return None

        self._check_generation(generation, "extraction result")

        item = HistoryItem(
            id=new_history_id(),
            data=result,
            preview_url=preview_url,
            file_type=document.mime_type,
        )
        self.current = result
        self.preview_url = preview_url
        self.file_type = document.mime_type
        self.state = SessionState.READY
        self.history = self.history_store.trim([item] + self.history)

        await self._persist_history(appended=item)
        return result

    async def change_language(self, language: str) -> Optional[AnalysisResult]:
        """
        Re-express the current result in ``language``.

        Returns the current result afterwards. On translation failure the
        previous result stays current and ``notice`` is set.

        Raises:
            SessionBusy: a submission or translation is in flight.
            InvalidTransition: there is no current result to translate.
            InputError: unsupported language.
        """
        if self.pending:
            raise SessionBusy("Please wait for the current request to finish.")
        if self.state is not SessionState.READY or self.current is None:
            raise InvalidTransition(f"Cannot change language while {self.state.value}")
        check_language(language)

        self.language = language
        if self.current.language == language:
            return self.current

        previous = self.current
        generation = self._advance(SessionState.TRANSLATING)
        self.notice = None

        try:
            return await self._translate(previous, language, generation)
        except StaleResponse as e:
            logger.debug(f"Discarded stale response: {e}")
            return None
        except BaseException:
            if generation == self._generation and self.state is SessionState.TRANSLATING:
                self.state = SessionState.READY
                self.language = previous.language
            raise

    async def _translate(self, previous: AnalysisResult, language: str, generation: int) -> AnalysisResult:
        try:
            translated = await self.translation.translate(previous, language)
        except TranslationFailed as e:
            self._check_generation(generation, "translation failure")
            self.state = SessionState.READY
            self.language = previous.language
            self.notice = e.user_message
            return previous

        self._check_generation(generation, "translation result")

        self.current = translated
        self.state = SessionState.READY
        self.history = [
            item.model_copy(update={"data": translated})
            if item.data.result_id == translated.result_id else item
            for item in self.history
        ]
        await self._persist_history()
        return translated

    def select_from_history(self, item_id: str) -> AnalysisResult:
        """Make a history item current. Valid from any state, no network."""
        item = next((item for item in self.history if item.id == item_id), None)
        if item is None:
            raise HistoryItemNotFound(f"No history item with id '{item_id}'")

        self._advance(SessionState.READY)
        self.current = item.data
        self.preview_url = item.preview_url
        self.file_type = item.file_type
        self.language = item.data.language
        self.error_message = None
        self.notice = None
        return item.data

    def acknowledge_error(self) -> None:
        if self.state is not SessionState.FAILED:
            raise InvalidTransition(f"Nothing to acknowledge while {self.state.value}")
        self.state = SessionState.IDLE
        self.error_message = None

    def dismiss_notice(self) -> None:
        self.notice = None

    def snapshot(self) -> Dict[str, Any]:
        """Plain JSON-ready view of the session."""
        current = self.current
        return {
            "state": self.state.value,
            "language": self.language,
            "current": current.model_dump(by_alias=True, mode="json") if current else None,
            "medicinesNeedingAttention": (
                [m.name for m in current.medicines_needing_attention()] if current else []
            ),
            "previewUrl": self.preview_url,
            "fileType": self.file_type,
            "errorMessage": self.error_message,
            "notice": self.notice,
            "history": [item.model_dump(by_alias=True, mode="json") for item in self.history],
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _advance(self, state: SessionState) -> int:
        self._generation += 1
        self.state = state
        return self._generation

    def _check_generation(self, generation: int, what: str) -> None:
        if generation != self._generation:
            raise StaleResponse(f"{what} from generation {generation}, now at {self._generation}")

    async def _persist_history(self, appended: Optional[HistoryItem] = None) -> None:
        """
        Write history through the store. On failure the in-memory list keeps
        working and the whole list is rewritten by the next mutation.
        """
        try:
            if appended is not None and not self._history_dirty:
                await self.history_store.append(appended)
            else:
                await self.history_store.replace_all(self.history)
            self._history_dirty = False
        except HistoryPersistenceError as e:
            self._history_dirty = True
            logger.warning(f"History not persisted, will retry on next change: {e}")
