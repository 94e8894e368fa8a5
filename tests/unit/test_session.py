"""
Unit tests for AnalysisSession.

The real extraction and translation clients run over a mocked
GenerativeModel; asyncio events hold responses back to exercise
in-flight and stale-response behaviour.
"""

import asyncio
import json
from typing import List

import pytest
import pytest_asyncio

from pipeline.analysis.errors import (
    CONTRACT_MESSAGE,
    BLOCKED_MESSAGE,
    HistoryItemNotFound,
    INTERRUPTED_MESSAGE,
    HistoryPersistenceError,
    InvalidTransition,
    SessionBusy,
)
from pipeline.analysis.extraction import ExtractionClient
from pipeline.analysis.history import HistoryStore, MemoryHistoryBackend
from pipeline.analysis.schema import DOSAGE_UNCLEAR, Document, HistoryItem
from pipeline.analysis.session import AnalysisSession, SessionState
from pipeline.analysis.translation import TranslationClient

pytestmark = pytest.mark.unit


class FlakyBackend(MemoryHistoryBackend):
    """Memory backend whose first ``failures`` calls raise."""

    def __init__(self, failures: int = 1):
        super().__init__()
        self.failures = failures
        self.writes: List[List[HistoryItem]] = []

    def read_all(self) -> List[HistoryItem]:
        if self.failures > 0:
            self.failures -= 1
            raise HistoryPersistenceError("disk unavailable")
        return super().read_all()

    def write_all(self, items: List[HistoryItem]) -> None:
        self.writes.append(list(items))
        super().write_all(items)


async def settle():
    """Let pending tasks run up to their next real suspension."""
    for _ in range(10):
        await asyncio.sleep(0)


@pytest.fixture
def backend() -> MemoryHistoryBackend:
    return MemoryHistoryBackend()


@pytest.fixture
def session(gemini_client, retry_policy, backend) -> AnalysisSession:
    return AnalysisSession(
        extraction=ExtractionClient(gemini_client, retry_policy),
        translation=TranslationClient(gemini_client, retry_policy),
        history_store=HistoryStore(backend, capacity=5),
    )


@pytest.fixture
def respond_with(mock_gemini_model, make_response):
    """Make every model call answer with ``payload``."""
    def _set(payload):
        mock_gemini_model.generate_content_async.side_effect = None
        mock_gemini_model.generate_content_async.return_value = make_response(
            text=json.dumps(payload, ensure_ascii=False)
        )
    return _set


@pytest_asyncio.fixture
async def ready_session(session, respond_with, sample_document, sample_analysis_payload):
    respond_with(sample_analysis_payload)
    await session.submit(sample_document)
    return session


class TestSubmit:
    """Tests for AnalysisSession.submit."""

    @pytest.mark.asyncio
    async def test_submit_success(self, session, respond_with, sample_document, sample_analysis_payload, backend):
        respond_with(sample_analysis_payload)

        result = await session.submit(sample_document)

        assert session.state is SessionState.READY
        assert session.current is result
        assert result.confidence_score == 87
        assert session.file_type == "image/jpeg"
        assert session.preview_url.startswith("data:image/jpeg;base64,")
        assert len(session.history) == 1
        assert session.history[0].data is result
        assert [item.id for item in backend.read_all()] == [session.history[0].id]

    @pytest.mark.asyncio
    async def test_amoxicillin_is_flagged_not_failed(self, session, respond_with, sample_document,
                                                     sample_analysis_payload):
        respond_with(sample_analysis_payload)

        await session.submit(sample_document)
        snapshot = session.snapshot()

        assert snapshot["state"] == "ready"
        assert snapshot["current"]["confidenceScore"] == 87
        assert snapshot["current"]["medicines"][0]["dosageStatus"] == DOSAGE_UNCLEAR
        assert snapshot["medicinesNeedingAttention"] == ["Amoxicillin"]

    @pytest.mark.asyncio
    async def test_malformed_response_leaves_no_result(self, ready_session, respond_with, sample_document,
                                                       sample_analysis_payload):
        del sample_analysis_payload["keyRecommendations"]
        respond_with(sample_analysis_payload)

        result = await ready_session.submit(sample_document)

        assert result is None
        assert ready_session.state is SessionState.FAILED
        assert ready_session.current is None
        assert ready_session.preview_url is None
        assert ready_session.error_message == CONTRACT_MESSAGE
        assert len(ready_session.history) == 1

    @pytest.mark.asyncio
    async def test_blocked_document_message(self, session, mock_gemini_model, make_response, sample_document):
        mock_gemini_model.generate_content_async.return_value = make_response(block_reason="OTHER")

        await session.submit(sample_document)

        assert session.state is SessionState.FAILED
        assert session.error_message == BLOCKED_MESSAGE

    @pytest.mark.asyncio
    async def test_second_submit_rejected_while_pending(self, session, mock_gemini_model, make_response,
                                                        sample_document, sample_analysis_payload):
        gate = asyncio.Event()

        async def held(*args, **kwargs):
            await gate.wait()
            return make_response(text=json.dumps(sample_analysis_payload))

        mock_gemini_model.generate_content_async.side_effect = held
        first = asyncio.create_task(session.submit(sample_document))
        await settle()

        assert session.state is SessionState.SUBMITTING
        with pytest.raises(SessionBusy):
            await session.submit(sample_document)

        gate.set()
        assert (await first).confidence_score == 87
        assert session.state is SessionState.READY

    @pytest.mark.asyncio
    async def test_submit_from_failed(self, session, respond_with, sample_document, sample_analysis_payload):
        bad = dict(sample_analysis_payload)
        del bad["summary"]
        respond_with(bad)
        await session.submit(sample_document)
        assert session.state is SessionState.FAILED

        respond_with(sample_analysis_payload)
        await session.submit(sample_document)

        assert session.state is SessionState.READY
        assert session.error_message is None

    @pytest.mark.asyncio
    async def test_submit_records_language(self, session, respond_with, sample_document, sample_analysis_payload):
        respond_with(sample_analysis_payload)

        result = await session.submit(sample_document, language="Tamil")

        assert result.language == "Tamil"
        assert session.language == "Tamil"


class TestChangeLanguage:
    """Tests for AnalysisSession.change_language."""

    @pytest.mark.asyncio
    async def test_translation_updates_in_place(self, ready_session, respond_with, translated_payload, backend):
        original = ready_session.current
        respond_with(translated_payload)

        translated = await ready_session.change_language("Hindi")

        assert ready_session.state is SessionState.READY
        assert ready_session.current is translated
        assert translated.language == "Hindi"
        assert translated.timestamp == original.timestamp
        assert translated.result_id == original.result_id
        assert len(ready_session.history) == 1
        assert ready_session.history[0].data.language == "Hindi"
        assert backend.read_all()[0].data.language == "Hindi"

    @pytest.mark.asyncio
    async def test_same_language_is_noop(self, ready_session, mock_gemini_model):
        calls = mock_gemini_model.generate_content_async.await_count

        result = await ready_session.change_language("English")

        assert result is ready_session.current
        assert mock_gemini_model.generate_content_async.await_count == calls

    @pytest.mark.asyncio
    async def test_failure_keeps_previous_result(self, ready_session, respond_with, translated_payload):
        original = ready_session.current
        translated_payload["medicines"].append(translated_payload["medicines"][0])
        respond_with(translated_payload)

        result = await ready_session.change_language("Hindi")

        assert result is original
        assert ready_session.state is SessionState.READY
        assert ready_session.current is original
        assert ready_session.language == "English"
        assert "Hindi" in ready_session.notice

        ready_session.dismiss_notice()
        assert ready_session.notice is None

    @pytest.mark.asyncio
    async def test_requires_current_result(self, session):
        with pytest.raises(InvalidTransition):
            await session.change_language("Hindi")

    @pytest.mark.asyncio
    async def test_rejected_while_translating(self, ready_session, mock_gemini_model, make_response,
                                              translated_payload):
        gate = asyncio.Event()

        async def held(*args, **kwargs):
            await gate.wait()
            return make_response(text=json.dumps(translated_payload))

        mock_gemini_model.generate_content_async.side_effect = held
        pending = asyncio.create_task(ready_session.change_language("Hindi"))
        await settle()

        assert ready_session.state is SessionState.TRANSLATING
        with pytest.raises(SessionBusy):
            await ready_session.change_language("Tamil")

        gate.set()
        await pending
        assert ready_session.current.language == "Hindi"


class TestStaleResponses:
    """Completions from a superseded generation are discarded."""

    @pytest.mark.asyncio
    async def test_late_translation_does_not_overwrite_new_submission(
        self, ready_session, mock_gemini_model, make_response, sample_analysis_payload, translated_payload,
        sample_pdf_bytes,
    ):
        first = ready_session.current
        second_payload = dict(sample_analysis_payload, summary="Second prescription.")
        gate = asyncio.Event()

        async def respond(contents, **kwargs):
            if isinstance(contents[0], dict):
                return make_response(text=json.dumps(second_payload))
            await gate.wait()
            return make_response(text=json.dumps(translated_payload))

        mock_gemini_model.generate_content_async.side_effect = respond
        translation = asyncio.create_task(ready_session.change_language("Hindi"))
        await settle()
        assert ready_session.state is SessionState.TRANSLATING

        second = await ready_session.submit(Document(data=sample_pdf_bytes, mime_type="application/pdf"))
        gate.set()
        late = await translation

        assert late is None
        assert ready_session.current is second
        assert ready_session.current.summary == "Second prescription."
        assert ready_session.state is SessionState.READY
        assert [item.data.result_id for item in ready_session.history] == [second.result_id, first.result_id]
        assert ready_session.history[1].data.language == "English"

    @pytest.mark.asyncio
    async def test_select_supersedes_pending_submission(self, ready_session, mock_gemini_model, make_response,
                                                        sample_document, sample_analysis_payload):
        item = ready_session.history[0]
        gate = asyncio.Event()

        async def held(*args, **kwargs):
            await gate.wait()
            return make_response(text=json.dumps(sample_analysis_payload))

        mock_gemini_model.generate_content_async.side_effect = held
        pending = asyncio.create_task(ready_session.submit(sample_document))
        await settle()

        ready_session.select_from_history(item.id)
        gate.set()

        assert await pending is None
        assert ready_session.current is item.data
        assert ready_session.state is SessionState.READY
        assert len(ready_session.history) == 1


class TestInterruptedRequests:
    """A request that ends without a result never leaves the session pending."""

    @staticmethod
    def hang_forever(mock_gemini_model):
        async def hang(*args, **kwargs):
            await asyncio.Event().wait()

        mock_gemini_model.generate_content_async.side_effect = hang

    @pytest.mark.asyncio
    async def test_cancelled_submission_can_be_resubmitted(self, session, mock_gemini_model, respond_with,
                                                           sample_document, sample_analysis_payload):
        self.hang_forever(mock_gemini_model)
        pending = asyncio.create_task(session.submit(sample_document))
        await settle()
        assert session.state is SessionState.SUBMITTING

        pending.cancel()
        with pytest.raises(asyncio.CancelledError):
            await pending

        assert session.state is SessionState.FAILED
        assert session.error_message == INTERRUPTED_MESSAGE

        respond_with(sample_analysis_payload)
        result = await session.submit(sample_document)

        assert session.state is SessionState.READY
        assert result.confidence_score == 87

    @pytest.mark.asyncio
    async def test_unexpected_error_marks_submission_failed(self, session, mock_gemini_model, sample_document):
        mock_gemini_model.generate_content_async.side_effect = RuntimeError("sdk bug")

        with pytest.raises(RuntimeError):
            await session.submit(sample_document)

        assert session.state is SessionState.FAILED
        assert not session.pending

    @pytest.mark.asyncio
    async def test_cancelled_translation_keeps_previous_result(self, ready_session, mock_gemini_model,
                                                               respond_with, translated_payload):
        previous = ready_session.current
        self.hang_forever(mock_gemini_model)
        pending = asyncio.create_task(ready_session.change_language("Hindi"))
        await settle()
        assert ready_session.state is SessionState.TRANSLATING

        pending.cancel()
        with pytest.raises(asyncio.CancelledError):
            await pending

        assert ready_session.state is SessionState.READY
        assert ready_session.current is previous
        assert ready_session.language == "English"

        respond_with(translated_payload)
        translated = await ready_session.change_language("Hindi")

        assert translated.language == "Hindi"


class TestHistoryOperations:
    """Tests for history selection, acknowledgment and persistence."""

    @pytest.mark.asyncio
    async def test_select_from_history(self, ready_session, respond_with, sample_document,
                                       sample_analysis_payload, mock_gemini_model):
        first_item = ready_session.history[0]
        del sample_analysis_payload["medicines"]
        respond_with(sample_analysis_payload)
        await ready_session.submit(sample_document)
        assert ready_session.state is SessionState.FAILED
        calls = mock_gemini_model.generate_content_async.await_count

        result = ready_session.select_from_history(first_item.id)

        assert result is first_item.data
        assert ready_session.state is SessionState.READY
        assert ready_session.preview_url == first_item.preview_url
        assert ready_session.error_message is None
        assert mock_gemini_model.generate_content_async.await_count == calls

    def test_select_unknown_id(self, session):
        with pytest.raises(HistoryItemNotFound):
            session.select_from_history("does-not-exist")

    @pytest.mark.asyncio
    async def test_acknowledge_error(self, session, respond_with, sample_document, sample_analysis_payload):
        del sample_analysis_payload["confidenceScore"]
        respond_with(sample_analysis_payload)
        await session.submit(sample_document)

        session.acknowledge_error()

        assert session.state is SessionState.IDLE
        assert session.error_message is None
        with pytest.raises(InvalidTransition):
            session.acknowledge_error()

    @pytest.mark.asyncio
    async def test_history_capacity(self, session, respond_with, sample_document, sample_analysis_payload):
        respond_with(sample_analysis_payload)

        for _ in range(7):
            await session.submit(sample_document)

        assert len(session.history) == 5
        assert len(await session.history_store.load_all()) == 5

    @pytest.mark.asyncio
    async def test_load_history(self, session, backend, make_history_item):
        backend.write_all([make_history_item(1), make_history_item(3), make_history_item(2)])

        items = await session.load_history()

        assert [item.id for item in items] == ["item-3", "item-2", "item-1"]
        assert session.state is SessionState.IDLE

    @pytest.mark.asyncio
    async def test_persistence_failure_is_retried(self, gemini_client, retry_policy, respond_with,
                                                  sample_document, sample_analysis_payload):
        backend = FlakyBackend(failures=1)
        session = AnalysisSession(
            ExtractionClient(gemini_client, retry_policy),
            TranslationClient(gemini_client, retry_policy),
            HistoryStore(backend, capacity=5),
        )
        respond_with(sample_analysis_payload)

        await session.submit(sample_document)
        assert session.state is SessionState.READY
        assert len(session.history) == 1
        assert backend.writes == []

        await session.submit(sample_document)

        assert len(backend.writes) == 1
        assert [item.id for item in backend.writes[0]] == [item.id for item in session.history]
        assert len(backend.writes[0]) == 2

    @pytest.mark.asyncio
    async def test_load_failure_starts_empty(self, gemini_client, retry_policy):
        session = AnalysisSession(
            ExtractionClient(gemini_client, retry_policy),
            TranslationClient(gemini_client, retry_policy),
            HistoryStore(FlakyBackend(failures=1)),
        )

        assert await session.load_history() == []
