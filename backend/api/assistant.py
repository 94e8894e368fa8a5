"""
Assistant Routes - Chat, nearby pharmacies and rate limiter stats.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from backend.core.services import Services, get_services
from pipeline.analysis.errors import AnalysisError, InputError
from pipeline.analysis.schema import DEFAULT_LANGUAGE, ChatMessage, ChatReply

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Assistant"])

ASSISTANT_BUSY = "The assistant is temporarily busy. Please try again in a moment."
NO_PHARMACIES = "No pharmacies found nearby."


class ChatRequest(BaseModel):
    history: List[ChatMessage] = Field(default_factory=list)
    message: str
    language: str = DEFAULT_LANGUAGE


@router.post("/chat", response_model=ChatReply)
async def chat(request: ChatRequest, services: Services = Depends(get_services)):
    """Answer a question about the current analysis."""
    try:
        return await services.assistant.reply(
            request.history,
            request.message,
            context=services.session.current,
            language=request.language,
        )
    except InputError as e:
        raise HTTPException(status_code=400, detail=e.user_message)
    except AnalysisError as e:
        logger.warning(f"Chat failed: {e}")
        raise HTTPException(status_code=503, detail=ASSISTANT_BUSY)


@router.get("/pharmacies")
async def nearby_pharmacies(
    lat: float = Query(..., description="Latitude"),
    lng: float = Query(..., description="Longitude"),
    services: Services = Depends(get_services),
):
    """Up to 3 grounded pharmacies near the given location."""
    try:
        pharmacies = await services.pharmacies.find_nearby(lat, lng)
    except InputError as e:
        raise HTTPException(status_code=400, detail=e.user_message)
    except AnalysisError as e:
        logger.warning(f"Pharmacy lookup failed: {e}")
        raise HTTPException(status_code=503, detail=e.user_message)

    return {
        "pharmacies": [p.model_dump(by_alias=True) for p in pharmacies],
        "message": None if pharmacies else NO_PHARMACIES,
    }


@router.get("/rate-limit-stats")
def get_rate_limit_stats(services: Services = Depends(get_services)):
    """Get rate limiting statistics."""
    return {
        "rate_limiting_enabled": True,
        **services.gemini.rate_limiter.get_stats()
    }
