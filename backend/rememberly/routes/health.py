"""
Rememberly Backend — Health Check Route
=========================================

What:  Liveness/readiness probe for load balancers and Docker.
How:   Reports the identity mode and probes the collaborators the current
       mode depends on.

Status levels:
    - healthy:   everything the current mode needs is reachable
    - degraded:  analysis unavailable (notes still work)
    - unhealthy: authenticated mode with the remote store unreachable (503)

A guest session never touches the remote store, so in guest mode the
database is reported as not_checked and cannot make the service unhealthy.
"""

import logging
import time

from fastapi import APIRouter, Depends, Request, Response, status

from rememberly import __version__
from rememberly.routes.deps import get_controller
from rememberly.schemas.api import HealthResponse
from rememberly.schemas.records import ModeState
from rememberly.services.analysis import CircuitBreaker
from rememberly.services.mode_controller import ModeController

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get("/health", response_model=HealthResponse, summary="Service health check")
async def health_check(
    request: Request,
    response: Response,
    controller: ModeController = Depends(get_controller),
) -> HealthResponse:
    mode = controller.current_mode
    overall = "healthy"

    # ── Remote store ──────────────────────────────────────────────────────
    db_status = "not_checked"
    if mode == ModeState.AUTHENTICATED:
        db_check = getattr(controller.remote_store, "health_check", None)
        if db_check is not None:
            db_status = "connected" if await db_check() else "disconnected"
            if db_status == "disconnected":
                overall = "unhealthy"

    # ── Analysis ──────────────────────────────────────────────────────────
    analyzer = getattr(request.app.state, "analyzer", None)
    if analyzer is None:
        gemini_status = "not_configured"
    else:
        breaker = getattr(analyzer, "circuit_breaker", None)
        if breaker is not None and breaker.state == CircuitBreaker.OPEN:
            gemini_status = "circuit_open"
        else:
            gemini_status = "available" if await analyzer.health_check() else "unavailable"
    if gemini_status != "available" and overall == "healthy":
        overall = "degraded"

    if overall == "unhealthy":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return HealthResponse(
        status=overall,
        version=__version__,
        mode=mode,
        database=db_status,
        gemini=gemini_status,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
