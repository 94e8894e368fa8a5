"""
API Route modules.

This package contains modular route files:
- analysis: Document submission, language change, session state
- history: Past analyses and selection
- assistant: Chat, nearby pharmacies, rate limiter stats
"""

from backend.api.analysis import router as analysis_router
from backend.api.history import router as history_router
from backend.api.assistant import router as assistant_router

__all__ = [
    'analysis_router',
    'history_router',
    'assistant_router',
]
