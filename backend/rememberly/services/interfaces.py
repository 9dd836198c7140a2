"""
Rememberly Backend — Collaborator Interfaces
==============================================

What:  Abstract contracts for the three external collaborators the core
       consumes: the authentication observer, the remote store client and
       the text analyzer.
How:   Concrete adapters (SessionAuthObserver, SQLAlchemyRemoteStore,
       GeminiAnalyzer) inherit from these; tests substitute in-memory fakes.
Who:   ModeController and MigrationEngine depend only on these types.
"""

from abc import ABC, abstractmethod
from typing import Awaitable, Callable, List, Optional, Union

from rememberly.schemas.records import (
    AnalysisResult,
    Identity,
    Note,
    NoteCreate,
    NoteType,
    NoteUpdate,
    Reminder,
    ReminderCreate,
    SignedIn,
    SignedOut,
)

AuthListener = Callable[[Union[SignedIn, SignedOut]], Awaitable[None]]
Unsubscribe = Callable[[], None]


class AuthObserver(ABC):
    """
    Source of identity events and of "who is signed in right now".

    Contract:
        - get_current_identity() returns None when nobody is signed in and
          may raise on provider errors; callers decide how to treat errors
        - listeners are awaited one at a time, in subscription order
    """

    @abstractmethod
    async def get_current_identity(self) -> Optional[Identity]:
        ...

    @abstractmethod
    def subscribe(self, listener: AuthListener) -> Unsubscribe:
        ...


class RemoteStore(ABC):
    """
    Authenticated system of record. Every call is scoped to one identity.

    Contract:
        - bulk inserts return the inserted rows in input order, with fresh
          remote ids and origin='remote'
        - guest ids are never reused as remote ids
        - failures raise RemoteStoreError (or NotFoundError for unknown ids)
    """

    # ── Migration ─────────────────────────────────────────────────────────

    @abstractmethod
    async def bulk_insert_notes(self, identity_id: str, notes: List[Note]) -> List[Note]:
        ...

    @abstractmethod
    async def bulk_insert_reminders(
        self, identity_id: str, reminders: List[Reminder]
    ) -> List[Reminder]:
        ...

    # ── Notes ─────────────────────────────────────────────────────────────

    @abstractmethod
    async def create_note(self, identity_id: str, data: NoteCreate) -> Note:
        ...

    @abstractmethod
    async def update_note(self, identity_id: str, note_id: str, changes: NoteUpdate) -> Note:
        ...

    @abstractmethod
    async def delete_note(self, identity_id: str, note_id: str) -> None:
        ...

    @abstractmethod
    async def list_notes(self, identity_id: str) -> List[Note]:
        """Newest first."""
        ...

    # ── Reminders ─────────────────────────────────────────────────────────

    @abstractmethod
    async def create_reminder(self, identity_id: str, data: ReminderCreate) -> Reminder:
        ...

    @abstractmethod
    async def list_active_reminders(self, identity_id: str) -> List[Reminder]:
        """Not completed, soonest remind_at first."""
        ...

    @abstractmethod
    async def complete_reminder(self, identity_id: str, reminder_id: str) -> Reminder:
        ...

    @abstractmethod
    async def delete_reminder(self, identity_id: str, reminder_id: str) -> None:
        ...


class TextAnalyzer(ABC):
    """
    Supplies a title, summary and tags for raw note content.

    Implementations handle their own retry logic and wrap provider errors
    in LLMServiceError / CircuitBreakerOpenError.
    """

    @abstractmethod
    async def analyze(self, content: str, note_type: NoteType = "text") -> AnalysisResult:
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        ...
