"""
Nearby pharmacy lookup grounded in Gemini's search tool.

Results are built only from the grounding chunks of the response. When the
service returns no grounding, the lookup returns an empty list; places are
never synthesized from the free-text answer.
"""

import logging
import math
from typing import Any, List, Optional

from pipeline.analysis.errors import InputError
from pipeline.analysis.gemini import GeminiClient
from pipeline.analysis.prompts import get_pharmacy_prompt
from pipeline.analysis.retry import RetryPolicy
from pipeline.analysis.schema import Pharmacy

logger = logging.getLogger(__name__)


MAX_RESULTS = 3
DEFAULT_GROUNDING_TOOL = "google_search_retrieval"
DEFAULT_NAME = "Nearby Pharmacy"
DEFAULT_ADDRESS = "Click for location"


def check_coordinates(latitude: float, longitude: float) -> None:
    for value in (latitude, longitude):
        if value is None or not math.isfinite(value):
            raise InputError("Location coordinates are missing or invalid.")
    if not -90.0 <= latitude <= 90.0 or not -180.0 <= longitude <= 180.0:
        raise InputError("Location coordinates are out of range.")


def _grounding_chunks(response: Any) -> List[Any]:
    candidates = list(getattr(response, "candidates", None) or [])
    if not candidates:
        return []
    metadata = getattr(candidates[0], "grounding_metadata", None)
    return list(getattr(metadata, "grounding_chunks", None) or [])


def _chunk_to_pharmacy(chunk: Any) -> Optional[Pharmacy]:
    # Maps chunks carry an address; web chunks only a title and link
    maps = getattr(chunk, "maps", None)
    if maps and getattr(maps, "uri", ""):
        return Pharmacy(
            name=getattr(maps, "title", "") or DEFAULT_NAME,
            uri=maps.uri,
            address=getattr(maps, "address", "") or DEFAULT_ADDRESS,
        )
    web = getattr(chunk, "web", None)
    if web and getattr(web, "uri", ""):
        return Pharmacy(
            name=getattr(web, "title", "") or DEFAULT_NAME,
            uri=web.uri,
            address=DEFAULT_ADDRESS,
        )
    return None


class PharmacyLocator:
    """
    Usage:
        locator = PharmacyLocator(gemini)
        pharmacies = await locator.find_nearby(12.9716, 77.5946)
    """

    def __init__(
        self,
        gemini: GeminiClient,
        retry_policy: Optional[RetryPolicy] = None,
        tools: Any = DEFAULT_GROUNDING_TOOL,
        limit: int = MAX_RESULTS,
    ):
        self.gemini = gemini
        self.retry_policy = retry_policy or RetryPolicy()
        self.tools = tools
        self.limit = limit

    async def find_nearby(self, latitude: float, longitude: float) -> List[Pharmacy]:
        check_coordinates(latitude, longitude)

        prompt = get_pharmacy_prompt(latitude, longitude)
        response = await self.retry_policy.execute(
            lambda: self.gemini.generate_grounded(prompt, tools=self.tools)
        )

        pharmacies = []
        for chunk in _grounding_chunks(response):
            pharmacy = _chunk_to_pharmacy(chunk)
            if pharmacy is not None:
                pharmacies.append(pharmacy)
            if len(pharmacies) >= self.limit:
                break

        if not pharmacies:
            logger.info("Pharmacy lookup returned no grounded places")
        else:
            logger.info(f"Found {len(pharmacies)} nearby pharmacies")
        return pharmacies
