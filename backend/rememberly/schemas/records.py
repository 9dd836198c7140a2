"""
Rememberly Backend — Domain Records
=====================================

What:  Pydantic models for everything that flows between the mode controller,
       the guest store, the remote store and the migration engine.
How:   One shape per record. A guest note and a remote note are the same
       `Note` model, told apart by `origin`; their ids come from disjoint
       namespaces and are never compared across stores.
Who:   Used by every service; serialized as-is by the guest store snapshot
       and by the HTTP routes.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field


NoteType = Literal["text", "url", "file", "image"]
Priority = Literal["low", "medium", "high"]


def utc_now() -> datetime:
    """Timezone-aware current time; every stored timestamp is UTC."""
    return datetime.now(timezone.utc)


class ModeState(str, Enum):
    """Which backend owns truth for the session right now."""

    UNINITIALIZED = "uninitialized"
    GUEST = "guest"
    AUTHENTICATED = "authenticated"
    MIGRATING = "migrating"


class RecordOrigin(str, Enum):
    GUEST = "guest"
    REMOTE = "remote"


# ══════════════════════════════════════════════════════════════════════════
# Guest Profile & Usage
# ══════════════════════════════════════════════════════════════════════════


class GuestProfile(BaseModel):
    """
    The anonymous session. At most one exists locally at a time.

    `note_count` is denormalized; the guest store re-derives it from the
    note list on every load and every note create/delete.
    """
    id: str = Field(description="Locally generated id, stable for the guest session")
    note_count: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utc_now)


class UsageCounters(BaseModel):
    """Live guest counts against the configured limits."""
    notes: int = Field(default=0, ge=0)
    reminders: int = Field(default=0, ge=0)
    max_notes: int = Field(ge=0)
    max_reminders: int = Field(ge=0)

    @property
    def notes_remaining(self) -> int:
        return max(self.max_notes - self.notes, 0)

    @property
    def reminders_remaining(self) -> int:
        return max(self.max_reminders - self.reminders, 0)


# ══════════════════════════════════════════════════════════════════════════
# Notes
# ══════════════════════════════════════════════════════════════════════════


class NoteCreate(BaseModel):
    """Caller-supplied fields for a new note; ids and timestamps are assigned by the store."""
    title: str = Field(min_length=1, max_length=500)
    original_content: str = Field(default="")
    summary: str = Field(default="")
    type: NoteType = Field(default="text")
    tags: List[str] = Field(default_factory=list)
    source_url: Optional[str] = None
    file_url: Optional[str] = None


class NoteUpdate(BaseModel):
    """
    Partial update. Only fields explicitly set by the caller are applied
    (`model_dump(exclude_unset=True)`).
    """
    title: Optional[str] = Field(default=None, min_length=1, max_length=500)
    original_content: Optional[str] = None
    summary: Optional[str] = None
    type: Optional[NoteType] = None
    tags: Optional[List[str]] = None
    source_url: Optional[str] = None
    file_url: Optional[str] = None


class Note(BaseModel):
    id: str
    title: str
    original_content: str = ""
    summary: str = ""
    type: NoteType = "text"
    tags: List[str] = Field(default_factory=list)
    source_url: Optional[str] = None
    file_url: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    origin: RecordOrigin

    model_config = {"from_attributes": True}


# ══════════════════════════════════════════════════════════════════════════
# Reminders
# ══════════════════════════════════════════════════════════════════════════


class ReminderCreate(BaseModel):
    title: str = Field(min_length=1, max_length=500)
    description: str = Field(default="")
    remind_at: datetime
    priority: Priority = Field(default="medium")
    note_id: Optional[str] = Field(
        default=None,
        description="Weak reference to a note in the same store; not ownership",
    )
    natural_input: Optional[str] = Field(
        default=None,
        description="The phrase the user typed, e.g. 'tomorrow at 9'",
    )


class Reminder(BaseModel):
    id: str
    note_id: Optional[str] = None
    title: str
    description: str = ""
    remind_at: datetime
    priority: Priority = "medium"
    is_completed: bool = False
    natural_input: Optional[str] = None
    created_at: datetime
    origin: RecordOrigin

    model_config = {"from_attributes": True}


class GuestExport(BaseModel):
    """Detached copy of all guest records, handed to the migration engine."""
    notes: List[Note] = Field(default_factory=list)
    reminders: List[Reminder] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.notes and not self.reminders


# ══════════════════════════════════════════════════════════════════════════
# Identity & Auth Events
# ══════════════════════════════════════════════════════════════════════════


class Identity(BaseModel):
    id: str = Field(min_length=1)
    email: Optional[str] = None


class SignedIn(BaseModel):
    kind: Literal["signed_in"] = "signed_in"
    identity: Identity


class SignedOut(BaseModel):
    kind: Literal["signed_out"] = "signed_out"


AuthEvent = Annotated[Union[SignedIn, SignedOut], Field(discriminator="kind")]


# ══════════════════════════════════════════════════════════════════════════
# Migration
# ══════════════════════════════════════════════════════════════════════════


class MigrationResult(BaseModel):
    """
    Counts reported to the user after a migration attempt.

    A partial migration (some batches or the reminder insert failed) is a
    normal outcome, reported with exact counts rather than as an error.
    """
    notes_migrated: int = 0
    reminders_migrated: int = 0
    notes_total: int = 0
    reminders_total: int = 0
    failed_batches: int = 0
    reminders_failed: bool = False

    @property
    def is_partial(self) -> bool:
        return (
            self.notes_migrated < self.notes_total
            or self.reminders_migrated < self.reminders_total
        )

    def describe(self) -> str:
        """Toast text, e.g. 'Migrated 3 of 5 notes and 1 of 1 reminders'."""
        return (
            f"Migrated {self.notes_migrated} of {self.notes_total} notes "
            f"and {self.reminders_migrated} of {self.reminders_total} reminders"
        )


class MigrationOutcome(BaseModel):
    """Notification payload delivered to migration listeners."""
    identity_id: str
    result: Optional[MigrationResult] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    occurred_at: datetime = Field(default_factory=utc_now)

    @property
    def succeeded(self) -> bool:
        return self.result is not None


# ══════════════════════════════════════════════════════════════════════════
# Text Analysis
# ══════════════════════════════════════════════════════════════════════════


class AnalysisResult(BaseModel):
    """What the text-analysis collaborator supplies for raw note content."""
    title: str
    summary: str = ""
    tags: List[str] = Field(default_factory=list)
