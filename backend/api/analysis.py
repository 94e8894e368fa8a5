"""
Analysis Routes - Document submission, language change and session state.
"""

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from pydantic import BaseModel

from backend.core.config import get_settings
from backend.core.services import get_analysis_session
from pipeline.analysis.errors import InputError, InvalidTransition, SessionBusy
from pipeline.analysis.preprocessing import prepare_document
from pipeline.analysis.schema import PatientProfile, Tone
from pipeline.analysis.session import AnalysisSession, SessionState

settings = get_settings()
router = APIRouter(tags=["Analysis"])


class LanguageRequest(BaseModel):
    language: str


@router.post("/analyze")
async def analyze_document(
    file: UploadFile = File(...),
    language: Optional[str] = Form(None),
    age: Optional[str] = Form(None),
    gender: Optional[str] = Form(None),
    tone: Optional[Tone] = Form(None),
    session: AnalysisSession = Depends(get_analysis_session),
):
    """
    Analyze a prescription or lab report.

    Returns the session snapshot. A failed analysis is reported through
    ``state == "failed"`` and ``errorMessage``, not an HTTP error.
    """
    if session.state is SessionState.SUBMITTING:
        raise HTTPException(status_code=409, detail="An analysis is already in progress.")

    data = await file.read()
    max_bytes = settings.preprocessing.max_upload_mb * 1024 * 1024
    if len(data) > max_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"File is larger than {settings.preprocessing.max_upload_mb} MB."
        )

    profile = None
    if age or gender or tone:
        profile = PatientProfile(age=age, gender=gender, tone=tone or Tone.SIMPLE)

    try:
        document = prepare_document(
            data,
            file.content_type,
            filename=file.filename,
            max_dimension=settings.preprocessing.max_dimension,
            jpeg_quality=settings.preprocessing.jpeg_quality,
        )
        await session.submit(document, language=language, patient_context=profile)
    except InputError as e:
        raise HTTPException(status_code=400, detail=e.user_message)
    except SessionBusy as e:
        raise HTTPException(status_code=409, detail=str(e))

    return session.snapshot()


@router.post("/language")
async def change_language(
    request: LanguageRequest,
    session: AnalysisSession = Depends(get_analysis_session),
):
    """Translate the current analysis. A failed translation sets ``notice``."""
    try:
        await session.change_language(request.language)
    except InputError as e:
        raise HTTPException(status_code=400, detail=e.user_message)
    except (SessionBusy, InvalidTransition) as e:
        raise HTTPException(status_code=409, detail=str(e))

    return session.snapshot()


@router.get("/session")
def get_session_state(session: AnalysisSession = Depends(get_analysis_session)):
    return session.snapshot()


@router.post("/session/acknowledge")
def acknowledge_error(session: AnalysisSession = Depends(get_analysis_session)):
    """Clear a failed analysis and return to idle."""
    try:
        session.acknowledge_error()
    except InvalidTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    return session.snapshot()


@router.post("/session/dismiss-notice")
def dismiss_notice(session: AnalysisSession = Depends(get_analysis_session)):
    session.dismiss_notice()
    return session.snapshot()
