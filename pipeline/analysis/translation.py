"""
Translation client: re-express an existing AnalysisResult in another language
without re-running extraction.
"""

import logging
from typing import Optional

from pipeline.analysis.errors import AnalysisError, ContractViolation, TranslationFailed
from pipeline.analysis.extraction import check_language
from pipeline.analysis.gemini import GeminiClient
from pipeline.analysis.prompts import get_translation_prompt
from pipeline.analysis.retry import RetryPolicy
from pipeline.analysis.schema import RESPONSE_SCHEMA, AnalysisResult, parse_analysis_payload

logger = logging.getLogger(__name__)


def _carry_invariants(existing: AnalysisResult, translated: AnalysisResult) -> AnalysisResult:
    """
    Keep non-textual fields from the original analysis.

    Confidence and lab statuses are facts about the document, not about the
    language; a translation that changes the shape of the result is rejected.
    """
    if len(translated.medicines) != len(existing.medicines):
        raise ContractViolation(
            f"translation returned {len(translated.medicines)} medicines, expected {len(existing.medicines)}"
        )
    if len(translated.lab_results) != len(existing.lab_results):
        raise ContractViolation(
            f"translation returned {len(translated.lab_results)} lab results, "
            f"expected {len(existing.lab_results)}"
        )

    lab_results = [
        lab.model_copy(update={"status": original.status})
        for lab, original in zip(translated.lab_results, existing.lab_results)
    ]
    medicines = [
        med.model_copy(update={"dosage_status": original.dosage_status})
        if original.dosage_unclear else med
        for med, original in zip(translated.medicines, existing.medicines)
    ]
    return translated.model_copy(update={
        "confidence_score": existing.confidence_score,
        "lab_results": lab_results,
        "medicines": medicines,
    })


class TranslationClient:
    """Translates analyses in place: same identity, new language."""

    def __init__(self, gemini: GeminiClient, retry_policy: Optional[RetryPolicy] = None):
        self.gemini = gemini
        self.retry_policy = retry_policy or RetryPolicy()

    async def translate(self, existing: AnalysisResult, target_language: str) -> AnalysisResult:
        """
        Return ``existing`` translated to ``target_language``.

        Translating to the language the result is already in returns the same
        object without a remote call.

        Raises:
            TranslationFailed: wraps the underlying taxonomy error as ``cause``.
                ``existing`` is left untouched.
        """
        if existing.language == target_language:
            return existing

        try:
            check_language(target_language)
            prompt = get_translation_prompt(existing.to_payload(), target_language)
            logger.info(f"Translating analysis {existing.result_id[:8]} {existing.language} -> {target_language}")

            text = await self.retry_policy.execute(
                lambda: self.gemini.generate_json([prompt], RESPONSE_SCHEMA)
            )
            translated = parse_analysis_payload(
                text,
                language=target_language,
                timestamp=existing.timestamp,
                result_id=existing.result_id,
            )
            return _carry_invariants(existing, translated)
        except AnalysisError as e:
            if isinstance(e, ContractViolation):
                logger.error(f"Translation response violates result contract: {e}")
            else:
                logger.warning(f"Translation to {target_language} failed: {e}")
            raise TranslationFailed(target_language, e) from e
