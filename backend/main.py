"""
MediDecode - Main FastAPI Application.

Routes are organized in modular files under backend/api/:
- analysis.py: Document submission, language change, session state
- history.py: Past analyses and selection
- assistant.py: Chat, nearby pharmacies, rate limiter stats
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backend.core.config import get_settings
from backend.core.services import build_services

# Import routers
from backend.api.analysis import router as analysis_router
from backend.api.history import router as history_router
from backend.api.assistant import router as assistant_router

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

settings = get_settings()

app = FastAPI(
    title="MediDecode",
    description="Prescription and lab report analysis with Gemini Vision",
    version="1.0.0"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def on_startup():
    """Compose the analysis session and restore its history."""
    if getattr(app.state, "services", None) is None:
        app.state.services = build_services(settings)
    history = await app.state.services.session.load_history()
    logger.info(f"MediDecode ready: {len(history)} past analyses, backend={settings.history.backend}")


# All routes are prefixed with /api/v1
app.include_router(analysis_router, prefix="/api/v1")
app.include_router(history_router, prefix="/api/v1")
app.include_router(assistant_router, prefix="/api/v1")


@app.get("/health")
def health_check():
    """Liveness plus the current session state."""
    services = getattr(app.state, "services", None)
    return {
        "status": "healthy",
        "version": app.version,
        "session_state": services.session.state.value if services else None,
    }


@app.get("/api/v1/health")
def api_health_check():
    return {"status": "healthy", "api_version": "v1"}
