"""
Rememberly Backend — Custom Exception Hierarchy
=================================================

What:  Application-specific exceptions for guest mode, quotas and migration.
How:   Each exception class carries a message and optional context dict.
       Global exception handlers (registered in main.py) catch these and
       return structured JSON error responses with correct HTTP status codes.
Who:   Raised by the guest store, mode controller, migration engine and
       adapters; caught by global handlers or by the mode controller.

Exception Hierarchy:
    RememberlyError (base)
    ├── QuotaExceededError          → 403 Forbidden (prompt to register)
    ├── NotFoundError               → 404 Not Found
    ├── AlreadyExistsError          → 409 Conflict
    ├── BusyError                   → 503 Service Unavailable (retry shortly)
    ├── SessionNotEstablishedError  → 409 Conflict (retry sign-in, data kept)
    ├── InvalidTransitionError      → 409 Conflict
    ├── StorageError                → 500 Internal Server Error
    ├── RemoteStoreError            → 502 Bad Gateway
    ├── LLMServiceError             → 503 Service Unavailable
    └── CircuitBreakerOpenError     → 503 Service Unavailable

A partial migration is not an error: it is a MigrationResult with
`is_partial` set.
"""

from typing import Any, Dict, Optional


class RememberlyError(Exception):
    """
    Base exception for all Rememberly application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged but NOT returned verbatim to clients)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class QuotaExceededError(RememberlyError):
    """
    Raised when a guest create would exceed the note or reminder limit.

    When:    Guest store create_note/create_reminder with the limit reached.
    Recovery: User-correctable. The client shows a prompt to register.
    Nothing is mutated before this is raised.
    """

    def __init__(
        self,
        resource: str = "note",
        limit: int = 0,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Guest {resource} limit reached ({limit}). "
            f"Please sign up to create more {resource}s."
        )
        ctx = context or {}
        ctx["resource"] = resource
        ctx["limit"] = limit
        super().__init__(message=message, context=ctx)
        self.resource = resource
        self.limit = limit


class NotFoundError(RememberlyError):
    """
    Raised when a requested record does not exist in its owning store.

    When:    update/delete/complete with an unknown id, or a guest create
             before any guest profile exists.
    """

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class AlreadyExistsError(RememberlyError):
    """Raised by create_profile when a guest profile is already persisted."""

    def __init__(
        self,
        resource: str = "guest profile",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=f"A {resource} already exists", context=context)


class BusyError(RememberlyError):
    """
    Raised when a unified CRUD call arrives while a mode transition is running.

    When:    Mode is `migrating` (or not yet resolved).
    Recovery: Transient; the caller retries shortly. Never alarming to users.
    """

    def __init__(
        self,
        message: str = "Your notes are being moved to your account. Please try again in a moment.",
        retry_after: int = 1,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after


class SessionNotEstablishedError(RememberlyError):
    """
    Raised when migration cannot confirm the target identity.

    When:    Every session verification attempt failed to match.
    Recovery: Migration aborted before any remote write. Local guest data is
             untouched; the user stays in guest mode and can sign in again.
    """

    def __init__(
        self,
        identity_id: Optional[str] = None,
        attempts: int = 0,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if identity_id:
            ctx["identity_id"] = identity_id
        ctx["attempts"] = attempts
        super().__init__(
            message=(
                "Your account session could not be confirmed. "
                "Your guest notes are safe; please sign in again."
            ),
            context=ctx,
        )
        self.identity_id = identity_id
        self.attempts = attempts


class InvalidTransitionError(RememberlyError):
    """Raised when an auth event is not valid for the current mode."""

    def __init__(
        self,
        event: str,
        state: str,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["event"] = event
        ctx["state"] = state
        super().__init__(
            message=f"Cannot handle '{event}' while in '{state}' mode",
            context=ctx,
        )
        self.event = event
        self.state = state


class StorageError(RememberlyError):
    """
    Raised when the local guest store cannot write its snapshot.

    The in-memory state is left unchanged, so memory never runs ahead of disk.
    """

    def __init__(
        self,
        message: str = "Could not save your notes on this device. Please try again.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class RemoteStoreError(RememberlyError):
    """
    Raised when the authenticated backend rejects or fails an operation.

    Security Note:
        The message returned to the client is always generic. Driver-level
        details are kept in `context` and logged server-side only.
    """

    def __init__(
        self,
        message: str = "Your account storage is unavailable. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class LLMServiceError(RememberlyError):
    """Raised when note analysis (Gemini) fails after all retries."""

    def __init__(
        self,
        message: str = "Note analysis is temporarily unavailable",
        retry_after: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if retry_after:
            ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after


class CircuitBreakerOpenError(RememberlyError):
    """
    Raised when the analysis circuit breaker is OPEN.

    CLOSED → failures reach threshold → OPEN (reject for recovery_time)
    → HALF-OPEN (one test call) → CLOSED on success, OPEN on failure.
    """

    def __init__(
        self,
        recovery_time: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Note analysis is temporarily unavailable due to repeated failures. "
            f"It will automatically retry in approximately {recovery_time} seconds."
        )
        ctx = context or {}
        ctx["recovery_time"] = recovery_time
        super().__init__(message=message, context=ctx)
        self.recovery_time = recovery_time
