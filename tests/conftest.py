"""
Shared pytest fixtures for MediDecode tests.

Provides mocked dependencies to avoid actual API calls and external services.
"""

import io
import os
import sys
import json
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from PIL import Image, ImageDraw

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from pipeline.analysis.gemini import GeminiClient
from pipeline.analysis.rate_limiter import AdaptiveRateLimiter, RateLimitConfig
from pipeline.analysis.retry import RetryPolicy
from pipeline.analysis.schema import AnalysisResult, Document, HistoryItem, parse_analysis_payload


# =============================================================================
# Environment Setup
# =============================================================================

@pytest.fixture(scope="session", autouse=True)
def setup_test_environment():
    """Set up test environment variables."""
    os.environ["TESTING"] = "true"
    os.environ["GEMINI_API_KEY"] = "test-api-key"
    yield


# =============================================================================
# Image Fixtures
# =============================================================================

@pytest.fixture
def sample_image() -> Image.Image:
    """Create a sample test image (simulating a prescription)."""
    img = Image.new("RGB", (600, 800), "white")
    draw = ImageDraw.Draw(img)

    # Dark horizontal bars to simulate handwritten lines
    for y in range(100, 700, 50):
        draw.rectangle([50, y, 550, y + 10], fill=(30, 30, 30))

    return img


@pytest.fixture
def sample_image_bytes(sample_image: Image.Image) -> bytes:
    buffer = io.BytesIO()
    sample_image.save(buffer, "JPEG", quality=90)
    return buffer.getvalue()


@pytest.fixture
def sample_png_bytes(sample_image: Image.Image) -> bytes:
    buffer = io.BytesIO()
    sample_image.save(buffer, "PNG")
    return buffer.getvalue()


@pytest.fixture
def sample_pdf_bytes() -> bytes:
    return b"%PDF-1.4\n1 0 obj\n<< /Type /Catalog >>\nendobj\ntrailer\n<< /Root 1 0 R >>\n%%EOF\n"


@pytest.fixture
def sample_document(sample_image_bytes: bytes) -> Document:
    return Document(data=sample_image_bytes, mime_type="image/jpeg", filename="prescription.jpg")


# =============================================================================
# Mock Redis
# =============================================================================

@pytest.fixture
def mock_redis():
    """Create a mock Redis client using fakeredis."""
    import fakeredis
    return fakeredis.FakeRedis()


# =============================================================================
# Sample Service Payloads
# =============================================================================

@pytest.fixture
def sample_analysis_payload() -> Dict[str, Any]:
    """Extraction payload for a prescription with an unreadable Amoxicillin dosage."""
    return {
        "summary": "Prescription for a bacterial throat infection with a recent blood count.",
        "medicines": [
            {
                "name": "Amoxicillin",
                "purpose": "Antibiotic that treats the throat infection.",
                "usage": "Take with a full glass of water.",
                "sideEffects": ["Nausea", "Diarrhea", "Skin rash"],
                "warnings": "Complete the full course even if you feel better.",
                "dosageStatus": "Dosage unclear from image",
                "schedule": {
                    "morning": True,
                    "afternoon": False,
                    "evening": False,
                    "night": True,
                    "beforeFood": False
                }
            }
        ],
        "labResults": [
            {
                "parameter": "Hemoglobin",
                "value": "13.2",
                "unit": "g/dL",
                "referenceRange": "13.0 - 17.0",
                "status": "Normal",
                "explanation": "Your hemoglobin is within the healthy range."
            },
            {
                "parameter": "WBC",
                "value": "12500",
                "unit": "/uL",
                "referenceRange": "4000 - 11000",
                "status": "High",
                "explanation": "A raised white cell count is common during infection."
            }
        ],
        "keyRecommendations": [
            "Finish the antibiotic course.",
            "Ask your pharmacist to confirm the Amoxicillin dose."
        ],
        "confidenceScore": 87
    }


@pytest.fixture
def translated_payload(sample_analysis_payload: Dict[str, Any]) -> Dict[str, Any]:
    """Hindi rendition of the sample payload, with drifted non-textual fields."""
    payload = json.loads(json.dumps(sample_analysis_payload))
    payload["summary"] = "गले के बैक्टीरियल संक्रमण के लिए पर्चा।"
    payload["medicines"][0]["purpose"] = "गले के संक्रमण का इलाज करने वाली एंटीबायोटिक।"
    payload["medicines"][0]["dosageStatus"] = "खुराक स्पष्ट नहीं"
    payload["labResults"][0]["status"] = "Borderline"
    payload["keyRecommendations"] = ["एंटीबायोटिक का कोर्स पूरा करें।"]
    payload["confidenceScore"] = 60
    return payload


@pytest.fixture
def sample_result(sample_analysis_payload: Dict[str, Any]) -> AnalysisResult:
    return parse_analysis_payload(
        json.dumps(sample_analysis_payload),
        language="English",
        timestamp=1_700_000_000_000,
        result_id="a1b2c3d4e5f6",
    )


@pytest.fixture
def make_history_item(sample_result: AnalysisResult) -> Callable[..., HistoryItem]:
    """Factory for history items with distinct ids and timestamps."""
    def _make(index: int, language: str = "English") -> HistoryItem:
        data = sample_result.model_copy(update={
            "timestamp": 1_700_000_000_000 + index * 1000,
            "result_id": f"result-{index}",
            "language": language,
        })
        return HistoryItem(
            id=f"item-{index}",
            data=data,
            preview_url="data:image/jpeg;base64,AAAA",
            file_type="image/jpeg",
        )
    return _make


# =============================================================================
# Mock Gemini API
# =============================================================================

@pytest.fixture
def make_response() -> Callable[..., SimpleNamespace]:
    """Factory for objects shaped like a generate_content response."""
    def _make(
        text: Optional[str] = None,
        finish_reason: str = "STOP",
        block_reason: Optional[str] = None,
        grounding_chunks: Optional[List[Any]] = None,
        candidates: bool = True,
    ) -> SimpleNamespace:
        parts = [SimpleNamespace(text=text)] if text is not None else []
        candidate = SimpleNamespace(
            content=SimpleNamespace(parts=parts),
            finish_reason=SimpleNamespace(name=finish_reason),
            grounding_metadata=SimpleNamespace(grounding_chunks=grounding_chunks or []),
        )
        return SimpleNamespace(
            prompt_feedback=SimpleNamespace(block_reason=block_reason),
            candidates=[candidate] if candidates else [],
        )
    return _make


@pytest.fixture
def mock_gemini_model() -> MagicMock:
    """GenerativeModel stand-in with async generate/chat methods."""
    model = MagicMock()
    model.generate_content_async = AsyncMock()
    chat = MagicMock()
    chat.send_message_async = AsyncMock()
    model.start_chat.return_value = chat
    return model


@pytest.fixture
def rate_limit_config() -> RateLimitConfig:
    """Rate limit config for testing."""
    return RateLimitConfig(
        requests_per_minute=10,
        window_seconds=60.0,
        adaptive_backoff=True,
        backoff_factor=0.8,
        recovery_threshold=3,
        min_requests_per_minute=2
    )


@pytest.fixture
def rate_limiter(rate_limit_config: RateLimitConfig) -> AdaptiveRateLimiter:
    return AdaptiveRateLimiter(rate_limit_config)


@pytest.fixture
def model_factory(mock_gemini_model: MagicMock) -> MagicMock:
    return MagicMock(return_value=mock_gemini_model)


@pytest.fixture
def gemini_client(model_factory: MagicMock) -> GeminiClient:
    """GeminiClient over the mocked model with a limiter that never waits."""
    limiter = AdaptiveRateLimiter(RateLimitConfig(requests_per_minute=1000))
    return GeminiClient("gemini-test", rate_limiter=limiter, model_factory=model_factory)


@pytest.fixture
def no_sleep() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def retry_policy(no_sleep: AsyncMock) -> RetryPolicy:
    """Three attempts, backoff recorded instead of slept."""
    return RetryPolicy(max_attempts=3, base_delay=1.5, sleep=no_sleep)


# =============================================================================
# History Backends
# =============================================================================

@pytest.fixture
def test_database_url(tmp_path: Path) -> str:
    return f"sqlite:///{tmp_path / 'history.db'}"


@pytest.fixture
def sql_engine(test_database_url: str):
    from backend.core.database import create_db_and_tables, get_engine
    engine = get_engine(test_database_url)
    create_db_and_tables(engine)
    yield engine
    engine.dispose()
