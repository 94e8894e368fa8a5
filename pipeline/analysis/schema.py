"""
Result contract for medical document analysis.

Defines the structured output the model service must return (RESPONSE_SCHEMA),
the validated Python types it is parsed into, and the history/session value
objects built on top of them.

Wire names are camelCase, matching the service contract; attributes are
snake_case.
"""

import json
import logging
import time
import uuid
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from pipeline.analysis.errors import ContractViolation

logger = logging.getLogger(__name__)


DOSAGE_UNCLEAR = "Dosage unclear from image"

# Whole-value answers the service sometimes uses instead of the sentinel
_ILLEGIBLE_MARKERS = frozenset({
    "unclear", "illegible", "unreadable", "not legible", "not readable", "unclear from image",
})
_DOSAGE_PREFIXES = ("dosage ", "dose ")

SUPPORTED_LANGUAGES = (
    "English", "Hindi", "Spanish", "French",
    "Arabic", "Bengali", "Telugu", "Tamil",
    "Marathi", "Gujarati", "Kannada",
)

DEFAULT_LANGUAGE = "English"


def _is_illegible_marker(dosage: str) -> bool:
    # "500 mg, frequency unclear" still carries a readable dose and is kept
    phrase = dosage.lower().strip(" .!-")
    for prefix in _DOSAGE_PREFIXES:
        if phrase.startswith(prefix):
            phrase = phrase[len(prefix):]
            break
    return phrase in _ILLEGIBLE_MARKERS


class LabStatus(str, Enum):
    NORMAL = "Normal"
    BORDERLINE = "Borderline"
    HIGH = "High"
    LOW = "Low"


class Tone(str, Enum):
    SIMPLE = "Simple"
    PROFESSIONAL = "Professional"
    REASSURING = "Reassuring"


class _WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )


class MedicineSchedule(_WireModel):
    morning: bool = False
    afternoon: bool = False
    evening: bool = False
    night: bool = False
    before_food: bool = False


class MedicineInfo(_WireModel):
    """One medicine as extracted from a prescription."""
    name: str
    purpose: str
    usage: str
    side_effects: List[str]
    warnings: str
    dosage_status: str = DOSAGE_UNCLEAR
    interaction_warning: Optional[str] = None
    schedule: Optional[MedicineSchedule] = None

    @field_validator("dosage_status", mode="before")
    @classmethod
    def _force_dosage_sentinel(cls, value: Any) -> Any:
        if value is None:
            return DOSAGE_UNCLEAR
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped or _is_illegible_marker(stripped):
                return DOSAGE_UNCLEAR
            return stripped
        return value

    @property
    def dosage_unclear(self) -> bool:
        return self.dosage_status == DOSAGE_UNCLEAR


class LabResult(_WireModel):
    parameter: str
    value: str
    unit: str
    reference_range: str
    status: LabStatus
    explanation: str

    @field_validator("value", "unit", "reference_range", mode="before")
    @classmethod
    def _numbers_as_text(cls, value: Any) -> Any:
        # The service occasionally emits bare numbers for value/range columns
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value


class ShorthandTerm(_WireModel):
    term: str
    meaning: str


class AnalysisResult(_WireModel):
    """
    A validated extraction result.

    ``result_id`` is the identity used to correlate a result with its history
    entry; ``timestamp`` is informational. Both survive translation.
    """
    summary: str
    medicines: List[MedicineInfo]
    lab_results: List[LabResult] = Field(default_factory=list)
    key_recommendations: List[str]
    interaction_warning: Optional[str] = None
    shorthand_decoded: List[ShorthandTerm] = Field(default_factory=list)
    ocr_notes: Optional[str] = None
    confidence_score: int = Field(ge=0, le=100, strict=True)
    timestamp: int
    result_id: str
    language: str

    @model_validator(mode="before")
    @classmethod
    def _interaction_matrix_fallback(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("interactionWarning") and data.get("interactionMatrix"):
            data = dict(data)
            data["interactionWarning"] = data["interactionMatrix"]
        return data

    @field_validator("lab_results", "shorthand_decoded", mode="before")
    @classmethod
    def _null_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    def medicines_needing_attention(self) -> List[MedicineInfo]:
        """Medicines whose dosage could not be read and must be flagged to the user."""
        return [m for m in self.medicines if m.dosage_unclear]

    def to_payload(self) -> Dict[str, Any]:
        """Textual content in wire format, without identity fields."""
        return self.model_dump(
            by_alias=True,
            exclude={"timestamp", "result_id", "language"},
            exclude_none=True,
            mode="json",
        )


class PatientProfile(_WireModel):
    """Optional patient context. Adjusts explanation style, never extraction."""
    age: Optional[str] = None
    gender: Optional[str] = None
    tone: Tone = Tone.SIMPLE


class HistoryItem(_WireModel):
    id: str
    data: AnalysisResult
    preview_url: str
    file_type: str


class Document(BaseModel):
    """Prepared document bytes ready for submission."""
    model_config = ConfigDict(frozen=True)

    data: bytes
    mime_type: str
    filename: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.data)


class Pharmacy(_WireModel):
    name: str
    uri: str
    address: str


class ChatMessage(_WireModel):
    role: Literal["user", "model"]
    text: str


class ChatReply(_WireModel):
    text: str
    suggestions: List[str] = Field(default_factory=list)


# =============================================================================
# Service response contract
# =============================================================================

RESPONSE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "summary": {"type": "string"},
        "medicines": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "name": {"type": "string"},
                    "purpose": {"type": "string"},
                    "usage": {"type": "string"},
                    "sideEffects": {"type": "array", "items": {"type": "string"}},
                    "warnings": {"type": "string"},
                    "dosageStatus": {
                        "type": "string",
                        "description": (
                            "If dosage is clearly visible, provide it. If the handwriting is "
                            f"illegible or dosage is missing, strictly return: '{DOSAGE_UNCLEAR}'."
                        ),
                    },
                    "interactionWarning": {
                        "type": "string",
                        "description": "Check if detected medicines conflict with each other.",
                    },
                    "schedule": {
                        "type": "object",
                        "properties": {
                            "morning": {"type": "boolean"},
                            "afternoon": {"type": "boolean"},
                            "evening": {"type": "boolean"},
                            "night": {"type": "boolean"},
                            "beforeFood": {"type": "boolean"},
                        },
                    },
                },
                "required": ["name", "purpose", "usage", "sideEffects", "warnings", "dosageStatus"],
            },
        },
        "labResults": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "parameter": {"type": "string"},
                    "value": {"type": "string"},
                    "unit": {"type": "string"},
                    "referenceRange": {"type": "string"},
                    "status": {"type": "string", "enum": [s.value for s in LabStatus]},
                    "explanation": {"type": "string"},
                },
                "required": ["parameter", "value", "unit", "referenceRange", "status", "explanation"],
            },
        },
        "shorthandDecoded": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "term": {"type": "string"},
                    "meaning": {"type": "string"},
                },
                "required": ["term", "meaning"],
            },
        },
        "interactionMatrix": {"type": "string"},
        "keyRecommendations": {"type": "array", "items": {"type": "string"}},
        "confidenceScore": {"type": "integer"},
        "ocrNotes": {"type": "string"},
    },
    "required": ["summary", "medicines", "keyRecommendations", "confidenceScore"],
}

# Fields assigned by the client, never trusted from the service
_CLIENT_FIELDS = ("timestamp", "resultId", "result_id", "language")


def now_ms() -> int:
    return int(time.time() * 1000)


def new_result_id() -> str:
    return uuid.uuid4().hex


def parse_analysis_payload(
    text: str,
    *,
    language: str,
    timestamp: int,
    result_id: str,
) -> AnalysisResult:
    """
    Decode and validate a raw service payload.

    Raises:
        ContractViolation: payload is not JSON, not an object, or does not
            satisfy the result schema.
    """
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise ContractViolation(f"response is not valid JSON: {e}") from e

    if not isinstance(payload, dict):
        raise ContractViolation(f"response is a {type(payload).__name__}, expected an object")

    for key in _CLIENT_FIELDS:
        payload.pop(key, None)

    try:
        return AnalysisResult.model_validate({
            **payload,
            "timestamp": timestamp,
            "resultId": result_id,
            "language": language,
        })
    except ValidationError as e:
        raise ContractViolation(f"response does not match result schema: {e}") from e
