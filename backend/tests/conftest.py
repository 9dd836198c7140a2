"""
Rememberly Backend — Test Configuration (conftest.py)
=======================================================

What:  Shared fixtures: an in-memory remote store, a guest store on tmp_path,
       an auth observer, a zero-delay migration engine, a wired controller
       and an HTTP client against the FastAPI app.

Fixture Hierarchy (all function-scoped):
    ├── guest_store:       GuestStore persisting to tmp_path
    ├── remote_store:      FakeRemoteStore (records every call)
    ├── auth_observer:     SessionAuthObserver
    ├── migration_engine:  MigrationEngine with no settle/backoff delay
    ├── controller:        ModeController subscribed to auth_observer
    └── test_client:       httpx AsyncClient over ASGITransport
"""

import os
import tempfile

# Override settings for testing BEFORE any rememberly imports
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["GEMINI_API_KEY"] = "test-key-not-real"
os.environ["GUEST_STORAGE_PATH"] = os.path.join(
    tempfile.mkdtemp(prefix="rememberly_test_"), "guest.json"
)
os.environ["MIGRATION_SETTLE_SECONDS"] = "0"
os.environ["MIGRATION_VERIFY_BACKOFF_SECONDS"] = "0"
os.environ["RETRY_MAX_ATTEMPTS"] = "2"
os.environ["RETRY_MIN_WAIT"] = "1"
os.environ["LOG_LEVEL"] = "WARNING"

import uuid  # noqa: E402
from datetime import datetime, timedelta, timezone  # noqa: E402
from typing import Dict, List, Set  # noqa: E402
from unittest.mock import AsyncMock  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from rememberly.exceptions import NotFoundError, RemoteStoreError  # noqa: E402
from rememberly.schemas.records import (  # noqa: E402
    AnalysisResult,
    Identity,
    Note,
    NoteCreate,
    NoteUpdate,
    RecordOrigin,
    Reminder,
    ReminderCreate,
    utc_now,
)
from rememberly.services.auth import SessionAuthObserver  # noqa: E402
from rememberly.services.guest_store import GuestStore  # noqa: E402
from rememberly.services.interfaces import RemoteStore  # noqa: E402
from rememberly.services.migration import MigrationEngine  # noqa: E402
from rememberly.services.mode_controller import ModeController  # noqa: E402


# ══════════════════════════════════════════════════════════════════════════
# In-memory Remote Store
# ══════════════════════════════════════════════════════════════════════════

class FakeRemoteStore(RemoteStore):
    """
    RemoteStore keeping rows in dicts keyed by identity.

    Failure injection:
        fail_note_batches: zero-based bulk_insert_notes call indexes that raise
        fail_reminders:    bulk_insert_reminders raises
        fail_all:          every call raises
    """

    def __init__(self):
        self.notes: Dict[str, List[Note]] = {}
        self.reminders: Dict[str, List[Reminder]] = {}
        self.calls: List[tuple] = []
        self.fail_note_batches: Set[int] = set()
        self.fail_reminders = False
        self.fail_all = False
        self._note_batch_calls = 0

    def _check(self, operation: str) -> None:
        if self.fail_all:
            raise RemoteStoreError(context={"operation": operation})

    async def bulk_insert_notes(self, identity_id, notes):
        self.calls.append(("bulk_insert_notes", identity_id, len(notes)))
        batch_index = self._note_batch_calls
        self._note_batch_calls += 1
        self._check("bulk_insert_notes")
        if batch_index in self.fail_note_batches:
            raise RemoteStoreError(context={"batch": batch_index})
        inserted = [
            n.model_copy(update={"id": str(uuid.uuid4()), "origin": RecordOrigin.REMOTE})
            for n in notes
        ]
        self.notes.setdefault(identity_id, []).extend(inserted)
        return inserted

    async def bulk_insert_reminders(self, identity_id, reminders):
        self.calls.append(("bulk_insert_reminders", identity_id, len(reminders)))
        self._check("bulk_insert_reminders")
        if self.fail_reminders:
            raise RemoteStoreError(context={"operation": "bulk_insert_reminders"})
        inserted = [
            r.model_copy(update={"id": str(uuid.uuid4()), "origin": RecordOrigin.REMOTE})
            for r in reminders
        ]
        self.reminders.setdefault(identity_id, []).extend(inserted)
        return inserted

    async def create_note(self, identity_id, data: NoteCreate):
        self.calls.append(("create_note", identity_id))
        self._check("create_note")
        now = utc_now()
        note = Note(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            origin=RecordOrigin.REMOTE,
            **data.model_dump(),
        )
        self.notes.setdefault(identity_id, []).append(note)
        return note

    def _find_note(self, identity_id, note_id) -> int:
        for index, note in enumerate(self.notes.get(identity_id, [])):
            if note.id == note_id:
                return index
        raise NotFoundError(resource="note", resource_id=note_id)

    async def update_note(self, identity_id, note_id, changes: NoteUpdate):
        self.calls.append(("update_note", identity_id, note_id))
        index = self._find_note(identity_id, note_id)
        updated = self.notes[identity_id][index].model_copy(
            update={**changes.model_dump(exclude_unset=True), "updated_at": utc_now()}
        )
        self.notes[identity_id][index] = updated
        return updated

    async def delete_note(self, identity_id, note_id):
        self.calls.append(("delete_note", identity_id, note_id))
        index = self._find_note(identity_id, note_id)
        del self.notes[identity_id][index]

    async def list_notes(self, identity_id):
        self.calls.append(("list_notes", identity_id))
        self._check("list_notes")
        return sorted(self.notes.get(identity_id, []), key=lambda n: n.created_at, reverse=True)

    async def create_reminder(self, identity_id, data: ReminderCreate):
        self.calls.append(("create_reminder", identity_id))
        reminder = Reminder(
            id=str(uuid.uuid4()),
            created_at=utc_now(),
            origin=RecordOrigin.REMOTE,
            **data.model_dump(),
        )
        self.reminders.setdefault(identity_id, []).append(reminder)
        return reminder

    async def list_active_reminders(self, identity_id):
        self.calls.append(("list_active_reminders", identity_id))
        active = [r for r in self.reminders.get(identity_id, []) if not r.is_completed]
        return sorted(active, key=lambda r: r.remind_at)

    def _find_reminder(self, identity_id, reminder_id) -> int:
        for index, reminder in enumerate(self.reminders.get(identity_id, [])):
            if reminder.id == reminder_id:
                return index
        raise NotFoundError(resource="reminder", resource_id=reminder_id)

    async def complete_reminder(self, identity_id, reminder_id):
        index = self._find_reminder(identity_id, reminder_id)
        done = self.reminders[identity_id][index].model_copy(update={"is_completed": True})
        self.reminders[identity_id][index] = done
        return done

    async def delete_reminder(self, identity_id, reminder_id):
        index = self._find_reminder(identity_id, reminder_id)
        del self.reminders[identity_id][index]

    def call_names(self) -> List[str]:
        return [call[0] for call in self.calls]


# ══════════════════════════════════════════════════════════════════════════
# Data Helpers
# ══════════════════════════════════════════════════════════════════════════

def make_note(title: str = "Groceries", **overrides) -> NoteCreate:
    data = {"title": title, "original_content": f"{title} content", "tags": ["test"]}
    data.update(overrides)
    return NoteCreate(**data)


def make_reminder(title: str = "Call mom", **overrides) -> ReminderCreate:
    data = {
        "title": title,
        "remind_at": datetime.now(timezone.utc) + timedelta(days=1),
        "natural_input": "tomorrow",
    }
    data.update(overrides)
    return ReminderCreate(**data)


# ══════════════════════════════════════════════════════════════════════════
# Fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def identity():
    return Identity(id="user-42", email="ada@example.com")


@pytest.fixture
def guest_path(tmp_path):
    return str(tmp_path / "guest" / "guest.json")


@pytest.fixture
def guest_store(guest_path):
    return GuestStore(path=guest_path, max_notes=3, max_reminders=2)


@pytest.fixture
def remote_store():
    return FakeRemoteStore()


@pytest.fixture
def auth_observer():
    return SessionAuthObserver()


@pytest.fixture
def sleep_mock():
    """Stands in for asyncio.sleep so settle/backoff waits can be asserted."""
    return AsyncMock()


@pytest.fixture
def migration_engine(guest_store, remote_store, auth_observer, sleep_mock):
    return MigrationEngine(
        guest_store,
        remote_store,
        auth_observer,
        settle_seconds=0,
        verify_attempts=3,
        verify_backoff_seconds=0,
        batch_size=10,
        sleep=sleep_mock,
    )


@pytest_asyncio.fixture
async def controller(guest_store, remote_store, auth_observer, migration_engine):
    """Controller subscribed to the observer and resolved into guest mode."""
    ctrl = ModeController(guest_store, remote_store, auth_observer, migration_engine)
    auth_observer.subscribe(ctrl.on_auth_event)
    await ctrl.resolve_initial_state()
    return ctrl


@pytest.fixture
def mock_analyzer():
    analyzer = AsyncMock()
    analyzer.analyze = AsyncMock(
        return_value=AnalysisResult(
            title="Weekly groceries",
            summary="Milk, eggs and bread for the week.",
            tags=["shopping", "food"],
        )
    )
    analyzer.health_check = AsyncMock(return_value=True)
    analyzer.circuit_breaker = None
    return analyzer


@pytest_asyncio.fixture
async def test_client(controller, mock_analyzer):
    """
    HTTP client against an app built around the `controller` fixture.

    ASGITransport does not run the lifespan, so the controller is already
    subscribed and resolved by its own fixture.
    """
    from rememberly.main import create_app

    app = create_app(controller=controller, analyzer=mock_analyzer)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
