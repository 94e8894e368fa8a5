"""
Extraction client: document bytes -> validated AnalysisResult.

One structured Gemini Vision call per attempt, retried only for transient
service failures. Either a fully valid result or a typed failure, never a
partially populated result.
"""

import logging
import time
from typing import Optional

from pipeline.analysis.errors import (
    ContentBlocked,
    ContractViolation,
    ExtractionFailed,
    InputError,
    TransientServiceError,
)
from pipeline.analysis.gemini import GeminiClient
from pipeline.analysis.preprocessing import SUPPORTED_MIME_TYPES, normalize_mime_type
from pipeline.analysis.prompts import get_analysis_prompt
from pipeline.analysis.retry import RetryPolicy
from pipeline.analysis.schema import (
    RESPONSE_SCHEMA,
    SUPPORTED_LANGUAGES,
    AnalysisResult,
    Document,
    PatientProfile,
    new_result_id,
    now_ms,
    parse_analysis_payload,
)

logger = logging.getLogger(__name__)


def check_language(language: str) -> str:
    if language not in SUPPORTED_LANGUAGES:
        raise InputError(f"Unsupported language '{language}'.")
    return language


class ExtractionClient:
    """
    Analyzes prescriptions and lab reports with Gemini.

    Usage:
        client = ExtractionClient(gemini, RetryPolicy(max_attempts=3))
        result = await client.analyze(document, "Hindi", PatientProfile(age="64"))
    """

    def __init__(self, gemini: GeminiClient, retry_policy: Optional[RetryPolicy] = None):
        self.gemini = gemini
        self.retry_policy = retry_policy or RetryPolicy()

    async def analyze(
        self,
        document: Document,
        target_language: str,
        patient_context: Optional[PatientProfile] = None,
    ) -> AnalysisResult:
        """
        Run extraction for one document.

        Raises:
            InputError: empty document, unsupported file type or language.
            ContentBlocked: the service refused the document.
            ContractViolation: the response did not match the result schema.
            ExtractionFailed: empty response, terminal service error, or
                transient failures exhausted (``reason`` tells which).
        """
        if not document.data:
            raise InputError("The uploaded file is empty.")
        if normalize_mime_type(document.mime_type) not in SUPPORTED_MIME_TYPES:
            raise InputError(f"Unsupported file type '{document.mime_type}'.")
        check_language(target_language)

        contents = [
            {"mime_type": document.mime_type, "data": document.data},
            get_analysis_prompt(target_language, patient_context),
        ]

        logger.info(
            f"Analyzing {document.mime_type} document ({document.size:,} bytes) in {target_language}"
        )
        start = time.time()

        try:
            text = await self.retry_policy.execute(
                lambda: self.gemini.generate_json(contents, RESPONSE_SCHEMA)
            )
        except TransientServiceError as e:
            logger.warning(f"Extraction gave up after retries: {e}")
            raise ExtractionFailed.from_transient(e) from e
        except ContentBlocked:
            logger.warning("Document was blocked by safety filters")
            raise

        try:
            result = parse_analysis_payload(
                text,
                language=target_language,
                timestamp=now_ms(),
                result_id=new_result_id(),
            )
        except ContractViolation as e:
            logger.error(f"Extraction response violates result contract: {e}")
            logger.debug(f"Raw response: {text[:500]}")
            raise

        logger.info(
            f"Extraction complete: {len(result.medicines)} medicines, "
            f"{len(result.lab_results)} lab results, confidence={result.confidence_score}, "
            f"time={time.time() - start:.1f}s"
        )
        unclear = result.medicines_needing_attention()
        if unclear:
            logger.info(f"Dosage unclear for: {', '.join(m.name for m in unclear)}")
        return result
