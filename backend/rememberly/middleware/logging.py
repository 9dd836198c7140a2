"""
Rememberly Backend — Request Logging Middleware
=================================================

What:  One access log line per request, tagged with the request id and the
       identity mode. A request that moved the session between modes (an
       auth event, a sign-in that migrated guest data) logs both ends, e.g.
       `mode=guest->authenticated`.
How:   Reads the controller's mode before and after the downstream call.
       Level follows status (5xx ERROR, 4xx WARNING, else INFO). /health is
       not logged.

Privacy:
    Bodies are never logged: note content and reminder text stay out of logs.
"""

import logging
import time
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from rememberly.middleware.request_id import request_id_var

logger = logging.getLogger("rememberly.access")

_QUIET_PATHS = frozenset({"/health"})


def _current_mode(request: Request) -> Optional[str]:
    controller = getattr(request.app.state, "controller", None)
    return controller.current_mode.value if controller is not None else None


def _level_for(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path in _QUIET_PATHS:
            return await call_next(request)

        mode_before = _current_mode(request)
        started = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - started) * 1000
        mode_after = _current_mode(request)

        mode = mode_after or "-"
        if mode_before != mode_after:
            mode = f"{mode_before}->{mode_after}"

        rid = request_id_var.get("")
        logger.log(
            _level_for(response.status_code),
            "%s %s %d %.1fms [%s] mode=%s",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            rid,
            mode,
            extra={
                "request_id": rid,
                "status": response.status_code,
                "duration_ms": round(duration_ms, 2),
                "mode_before": mode_before,
                "mode_after": mode_after,
            },
        )
        return response
