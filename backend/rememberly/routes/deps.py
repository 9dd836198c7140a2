"""
Rememberly Backend — Route Dependencies

Components live on app.state (set by create_app or the lifespan handler);
these FastAPI dependencies hand them to route handlers.
"""

from fastapi import Request

from rememberly.exceptions import LLMServiceError
from rememberly.services.auth import SessionAuthObserver
from rememberly.services.interfaces import TextAnalyzer
from rememberly.services.mode_controller import ModeController


def get_controller(request: Request) -> ModeController:
    return request.app.state.controller


def get_auth_observer(request: Request) -> SessionAuthObserver:
    return request.app.state.controller.auth_observer


def get_analyzer(request: Request) -> TextAnalyzer:
    analyzer = getattr(request.app.state, "analyzer", None)
    if analyzer is None:
        # Gemini failed to start (see build_analyzer); notes still work without it
        raise LLMServiceError(
            message="Note analysis is not configured on this server.",
            context={"reason": "analyzer_unavailable"},
        )
    return analyzer
