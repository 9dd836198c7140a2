"""
Rememberly Backend — API Request/Response Schemas
===================================================

What:  Pydantic models for the HTTP surface only. Domain records (Note,
       Reminder, MigrationOutcome...) are returned as-is from
       rememberly.schemas.records.
Who:   Used by route handlers for request validation and response shaping,
       and by FastAPI for the OpenAPI docs.
"""

from typing import Literal, Optional

from pydantic import BaseModel, Field, model_validator

from rememberly.schemas.records import (
    GuestProfile,
    Identity,
    MigrationOutcome,
    ModeState,
    NoteType,
    UsageCounters,
)


class ModeResponse(BaseModel):
    """Where the session stands: mode, who is signed in, the guest profile."""
    mode: ModeState
    identity: Optional[Identity] = None
    guest_profile: Optional[GuestProfile] = None
    has_guest_data: bool = False


class UsageResponse(BaseModel):
    """
    Guest usage against limits. `limited` is False outside guest mode, where
    the counts are zero and the limits do not apply.
    """
    mode: ModeState
    limited: bool
    notes: int
    reminders: int
    max_notes: int
    max_reminders: int
    notes_remaining: int
    reminders_remaining: int

    @classmethod
    def from_counters(cls, mode: ModeState, counters: UsageCounters) -> "UsageResponse":
        return cls(
            mode=mode,
            limited=mode == ModeState.GUEST,
            notes=counters.notes,
            reminders=counters.reminders,
            max_notes=counters.max_notes,
            max_reminders=counters.max_reminders,
            notes_remaining=counters.notes_remaining,
            reminders_remaining=counters.reminders_remaining,
        )


class AuthEventRequest(BaseModel):
    """
    Auth provider callback relayed by the client.

    Example:
        {"event": "signed_in", "identity": {"id": "user-42", "email": "a@b.c"}}
        {"event": "signed_out"}
    """
    event: Literal["signed_in", "signed_out"]
    identity: Optional[Identity] = None

    @model_validator(mode="after")
    def identity_required_for_sign_in(self) -> "AuthEventRequest":
        if self.event == "signed_in" and self.identity is None:
            raise ValueError("identity is required for a signed_in event")
        return self


class AuthEventResponse(BaseModel):
    mode: ModeState
    migration: Optional[MigrationOutcome] = Field(
        default=None,
        description="Outcome of the migration this event triggered, if any",
    )


class NoteDraft(BaseModel):
    """Raw content to be titled, summarized and tagged before it is saved."""
    content: str = Field(min_length=1, max_length=20000)
    type: NoteType = Field(default="text")
    source_url: Optional[str] = None
    file_url: Optional[str] = None


class ErrorResponse(BaseModel):
    """
    Uniform error body for every non-2xx response.

    Example:
        {
            "error": "quota_exceeded",
            "message": "Guest note limit reached (3). Please sign up to create more notes.",
            "details": {"resource": "note", "limit": 3},
            "request_id": "a1b2c3d4"
        }
    """
    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    status: str = Field(description="Overall service status: healthy, degraded, unhealthy")
    version: str
    mode: ModeState
    database: str = Field(description="Remote store: connected, disconnected, not_checked")
    gemini: str = Field(description="Analysis: available, unavailable, circuit_open, not_configured")
    uptime_seconds: float
