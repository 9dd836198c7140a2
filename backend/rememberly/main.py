"""
Rememberly Backend — FastAPI Application Factory
==================================================

What:  Creates and configures the FastAPI application instance.
How:   create_app() wires middleware, exception handlers and routers. The
       lifespan handler builds the components (unless they were injected),
       subscribes the ModeController to the auth observer and resolves the
       initial identity mode before the first request is served.
Who:   uvicorn (uvicorn rememberly.main:app); tests call create_app() with
       their own controller and analyzer.

Lifecycle:
    Startup:
    1. Initialize logging
    2. Validate configuration (log, don't exit: guest mode works without Gemini)
    3. Build GuestStore, SQLAlchemyRemoteStore, SessionAuthObserver,
       ModeController, GeminiAnalyzer
    4. Subscribe controller to auth events, resolve the initial mode

    Shutdown:
    1. Unsubscribe from auth events
    2. Dispose database engine
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from rememberly import __version__
from rememberly.config import settings
from rememberly.database import dispose_engine
from rememberly.exceptions import (
    AlreadyExistsError,
    BusyError,
    CircuitBreakerOpenError,
    InvalidTransitionError,
    LLMServiceError,
    NotFoundError,
    QuotaExceededError,
    RememberlyError,
    RemoteStoreError,
    SessionNotEstablishedError,
    StorageError,
)
from rememberly.middleware.logging import RequestLoggingMiddleware
from rememberly.middleware.request_id import MODE_HEADER, RequestIDMiddleware, request_id_var
from rememberly.routes import health, mode, notes, reminders
from rememberly.services.analysis import GeminiAnalyzer
from rememberly.services.auth import SessionAuthObserver
from rememberly.services.guest_store import GuestStore
from rememberly.services.interfaces import TextAnalyzer
from rememberly.services.mode_controller import ModeController
from rememberly.services.remote_store import SQLAlchemyRemoteStore

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """Configure the root logger once: stdout, level from settings."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Components
# ══════════════════════════════════════════════════════════════════════════

def build_controller() -> ModeController:
    """Default wiring: local JSON guest store, SQL remote store, in-process auth."""
    return ModeController(
        guest_store=GuestStore(),
        remote_store=SQLAlchemyRemoteStore(),
        auth_observer=SessionAuthObserver(),
    )


def build_analyzer() -> Optional[TextAnalyzer]:
    try:
        return GeminiAnalyzer()
    except Exception as e:
        logger.error("Note analysis disabled, Gemini client failed to initialize: %s", str(e))
        return None


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    setup_logging()
    logger.info("=" * 60)
    logger.info("Rememberly Backend %s starting up...", __version__)

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        logger.error("Configuration error: %s", str(e))

    if app.state.controller is None:
        app.state.controller = build_controller()
    if app.state.analyzer is None:
        app.state.analyzer = build_analyzer()

    controller: ModeController = app.state.controller
    unsubscribe = controller.auth_observer.subscribe(controller.on_auth_event)
    state = await controller.resolve_initial_state()

    logger.info(
        "Guest limits: %d notes, %d reminders; guest store at %s",
        settings.guest_max_notes,
        settings.guest_max_reminders,
        settings.guest_storage_path,
    )
    logger.info("Initial mode: %s", state.value)
    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    logger.info("Rememberly Backend shutting down...")
    unsubscribe()
    await controller.wait_settled()
    await dispose_engine()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def _error_response(
    status_code: int,
    error: str,
    exc: RememberlyError,
    details: Optional[dict] = None,
    headers: Optional[dict] = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": error,
            "message": exc.message,
            "details": details,
            "request_id": request_id_var.get(""),
        },
        headers=headers,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map domain errors to HTTP responses with one body shape.

        QuotaExceededError          → 403
        NotFoundError               → 404
        AlreadyExistsError          → 409
        SessionNotEstablishedError  → 409
        InvalidTransitionError      → 409
        BusyError                   → 503 + Retry-After
        LLMServiceError             → 503
        CircuitBreakerOpenError     → 503 + Retry-After
        RemoteStoreError            → 502
        StorageError                → 500
        RememberlyError / Exception → 500

    Context of server-side failures is logged, never returned.
    """

    @app.exception_handler(QuotaExceededError)
    async def handle_quota_exceeded(request: Request, exc: QuotaExceededError):
        logger.info("[%s] Guest quota reached: %s", request_id_var.get(""), exc.message)
        return _error_response(
            403,
            "quota_exceeded",
            exc,
            details={"resource": exc.resource, "limit": exc.limit},
        )

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        return _error_response(404, "not_found", exc)

    @app.exception_handler(AlreadyExistsError)
    async def handle_already_exists(request: Request, exc: AlreadyExistsError):
        return _error_response(409, "already_exists", exc)

    @app.exception_handler(SessionNotEstablishedError)
    async def handle_session_not_established(request: Request, exc: SessionNotEstablishedError):
        logger.warning("[%s] %s", request_id_var.get(""), exc.message)
        return _error_response(
            409,
            "session_not_established",
            exc,
            details={"attempts": exc.attempts},
        )

    @app.exception_handler(InvalidTransitionError)
    async def handle_invalid_transition(request: Request, exc: InvalidTransitionError):
        return _error_response(
            409,
            "invalid_transition",
            exc,
            details={"event": exc.event, "mode": exc.state},
        )

    @app.exception_handler(BusyError)
    async def handle_busy(request: Request, exc: BusyError):
        return _error_response(
            503,
            "busy",
            exc,
            details={"retry_after": exc.retry_after},
            headers={"Retry-After": str(exc.retry_after)},
        )

    @app.exception_handler(CircuitBreakerOpenError)
    async def handle_circuit_breaker(request: Request, exc: CircuitBreakerOpenError):
        logger.warning("[%s] Circuit breaker open: %s", request_id_var.get(""), exc.message)
        return _error_response(
            503,
            "service_unavailable",
            exc,
            details={"recovery_time": exc.recovery_time},
            headers={"Retry-After": str(exc.recovery_time)},
        )

    @app.exception_handler(LLMServiceError)
    async def handle_llm_error(request: Request, exc: LLMServiceError):
        logger.error("[%s] Analysis error: %s", request_id_var.get(""), exc.message)
        headers = {"Retry-After": str(exc.retry_after)} if exc.retry_after else None
        return _error_response(503, "llm_service_error", exc, headers=headers)

    @app.exception_handler(RemoteStoreError)
    async def handle_remote_store_error(request: Request, exc: RemoteStoreError):
        logger.error(
            "[%s] Remote store error: %s | Context: %s",
            request_id_var.get(""),
            exc.message,
            exc.context,
        )
        return _error_response(502, "remote_store_error", exc)

    @app.exception_handler(StorageError)
    async def handle_storage_error(request: Request, exc: StorageError):
        logger.error(
            "[%s] Guest storage error: %s | Context: %s",
            request_id_var.get(""),
            exc.message,
            exc.context,
        )
        return _error_response(500, "storage_error", exc)

    @app.exception_handler(RememberlyError)
    async def handle_app_error(request: Request, exc: RememberlyError):
        logger.error("[%s] Unhandled application error: %s", request_id_var.get(""), exc.message)
        return _error_response(500, "server_error", exc)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        rid = request_id_var.get("")
        logger.error("[%s] Unexpected error: %s", rid, str(exc), exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred. Please try again or contact support.",
                "details": None,
                "request_id": rid,
            },
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app(
    controller: Optional[ModeController] = None,
    analyzer: Optional[TextAnalyzer] = None,
) -> FastAPI:
    """
    Assemble the application.

    Args:
        controller: Pre-built ModeController; built in the lifespan if None
        analyzer: TextAnalyzer for POST /api/notes/analyze; GeminiAnalyzer if None
    """
    app = FastAPI(
        title="Rememberly API",
        description=(
            "Notes and reminders with a limited guest mode. Signing in moves the "
            "guest's notes and reminders into the account."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.controller = controller
    app.state.analyzer = analyzer

    # Executes in reverse order of addition: RequestID → Logging → GZip → CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Total-Count", "Retry-After", MODE_HEADER],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)

    app.include_router(mode.router)
    app.include_router(notes.router)
    app.include_router(reminders.router)
    app.include_router(health.router)

    return app


app = create_app()
