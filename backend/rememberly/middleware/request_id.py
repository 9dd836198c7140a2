"""
Rememberly Backend — Request ID Middleware
============================================

What:  Tags every request with a short correlation id and echoes it back in
       the X-Request-ID response header, together with the identity mode
       that served the request (X-Rememberly-Mode).
How:   Client-supplied X-Request-ID is reused, otherwise a fresh 8-char id is
       generated. The id lives in a ContextVar so loggers and exception
       handlers can read it without access to the request.
"""

import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

request_id_var: ContextVar[str] = ContextVar("request_id", default="")

MODE_HEADER = "X-Rememberly-Mode"


class RequestIDMiddleware(BaseHTTPMiddleware):

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())[:8]
        request_id_var.set(rid)
        request.state.request_id = rid

        response = await call_next(request)

        response.headers["X-Request-ID"] = rid
        # Mode after the request: a sign-in request reports where it landed
        controller = getattr(request.app.state, "controller", None)
        if controller is not None:
            response.headers[MODE_HEADER] = controller.current_mode.value
        return response
