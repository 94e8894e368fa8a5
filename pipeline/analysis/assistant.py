"""
Conversational assistant about the current analysis.
"""

import logging
from typing import List, Optional, Sequence

from pipeline.analysis.errors import ContentBlocked, ExtractionFailed
from pipeline.analysis.extraction import check_language
from pipeline.analysis.gemini import GeminiClient, response_text
from pipeline.analysis.prompts import SUGGESTION_MARKER, get_chat_system_instruction
from pipeline.analysis.retry import RetryPolicy
from pipeline.analysis.schema import DEFAULT_LANGUAGE, AnalysisResult, ChatMessage, ChatReply

logger = logging.getLogger(__name__)


SAFETY_REFUSAL = (
    "I'm sorry, but I cannot answer that specific question due to safety restrictions. "
    "Please consult your doctor for clinical advice."
)
EMPTY_ANSWER = "I encountered an issue processing your request. Please try rephrasing."


def split_suggestions(text: str):
    """Separate ``[SUGGESTION] ...`` lines from the answer body."""
    body, suggestions = [], []
    for line in text.splitlines():
        stripped = line.strip().lstrip("-*").strip()
        if stripped.startswith(SUGGESTION_MARKER):
            suggestion = stripped[len(SUGGESTION_MARKER):].strip()
            if suggestion:
                suggestions.append(suggestion)
        else:
            body.append(line)
    return "\n".join(body).strip(), suggestions


class ChatAssistant:
    """
    Usage:
        assistant = ChatAssistant(gemini)
        reply = await assistant.reply(history, "Can I take this with food?", context=result)
    """

    def __init__(self, gemini: GeminiClient, retry_policy: Optional[RetryPolicy] = None):
        self.gemini = gemini
        self.retry_policy = retry_policy or RetryPolicy()

    async def reply(
        self,
        history: Sequence[ChatMessage],
        message: str,
        context: Optional[AnalysisResult] = None,
        language: str = DEFAULT_LANGUAGE,
    ) -> ChatReply:
        """
        Answer ``message`` given prior turns and the current analysis.

        Raises:
            TransientServiceError: retries exhausted.
            ExtractionFailed: terminal service error.
        """
        check_language(language)
        instruction = get_chat_system_instruction(context.to_payload() if context else None, language)
        turns: List[dict] = [{"role": m.role, "parts": [m.text]} for m in history]

        try:
            response = await self.retry_policy.execute(
                lambda: self.gemini.send_chat(instruction, turns, message)
            )
            text = response_text(response)
        except ContentBlocked:
            logger.info("Chat answer stopped by safety filters")
            return ChatReply(text=SAFETY_REFUSAL)
        except ExtractionFailed as e:
            if e.reason != "unreadable":
                raise
            return ChatReply(text=EMPTY_ANSWER)

        body, suggestions = split_suggestions(text)
        return ChatReply(text=body or EMPTY_ANSWER, suggestions=suggestions)
