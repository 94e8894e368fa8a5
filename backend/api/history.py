"""
History Routes - Past analyses and selection.
"""

from fastapi import APIRouter, Depends, HTTPException

from backend.core.services import get_analysis_session
from pipeline.analysis.errors import HistoryItemNotFound
from pipeline.analysis.session import AnalysisSession

router = APIRouter(prefix="/history", tags=["History"])


@router.get("")
def list_history(session: AnalysisSession = Depends(get_analysis_session)):
    """Most recent first."""
    return {
        "capacity": session.history_store.capacity,
        "items": [item.model_dump(by_alias=True, mode="json") for item in session.history],
    }


@router.post("/{item_id}/select")
def select_history_item(
    item_id: str,
    session: AnalysisSession = Depends(get_analysis_session),
):
    """Make a past analysis current without calling the model."""
    try:
        session.select_from_history(item_id)
    except HistoryItemNotFound:
        raise HTTPException(status_code=404, detail="History item not found")
    return session.snapshot()
