"""
Rememberly Backend — Local Guest Store
========================================

What:  Durable CRUD for exactly one anonymous guest: profile, notes, reminders.
How:   The whole guest state is one JSON snapshot on local disk. Every
       mutation builds the next state, writes it to a temporary sibling file
       with aiofiles, atomically renames it over the snapshot, and only then
       swaps it into memory.
Who:   Owned by the ModeController (unified CRUD while in guest mode) and
       read by the MigrationEngine through export_all(), retire() and
       clear_all().
       No other component touches the snapshot file.

Crash safety:
    - The rename is atomic, so the snapshot on disk is always a complete
      previous or next state, never a torn write.
    - Memory is updated after the durable write succeeds; a failed write
      raises StorageError and leaves memory as it was.
    - initialize() recomputes the profile's note_count from the persisted
      note list, so a stale stored counter can never be used to bypass
      the quota.

Snapshot layout:
    {
        "version": 1,
        "profile": {"id": "guest_…", "note_count": 2, "created_at": "…"},
        "notes": [newest, …, oldest],
        "reminders": [oldest, …, newest],
        "retired_for": null          // set while a migration is under way
    }
"""

import asyncio
import logging
import os
import uuid
from pathlib import Path
from typing import List, Optional

import aiofiles
import aiofiles.os
from pydantic import BaseModel, Field, ValidationError

from rememberly.config import settings
from rememberly.exceptions import AlreadyExistsError, NotFoundError, StorageError
from rememberly.schemas.records import (
    GuestExport,
    GuestProfile,
    Note,
    NoteCreate,
    NoteUpdate,
    RecordOrigin,
    Reminder,
    ReminderCreate,
    UsageCounters,
    utc_now,
)
from rememberly.services.quota import QuotaOperation, check_quota

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1

# Fields that may not be cleared to None by a partial note update
_REQUIRED_NOTE_FIELDS = {"title", "original_content", "summary", "type", "tags"}


class GuestSnapshot(BaseModel):
    """On-disk representation of the guest store."""
    version: int = SNAPSHOT_VERSION
    profile: Optional[GuestProfile] = None
    notes: List[Note] = Field(default_factory=list)
    reminders: List[Reminder] = Field(default_factory=list)
    # Identity the records were migrated to; set before the transfer starts
    retired_for: Optional[str] = None


def _new_record_id() -> str:
    return uuid.uuid4().hex


_fsync = aiofiles.os.wrap(os.fsync)


class GuestStore:
    """
    Local persistence for a single guest identity.

    Lifecycle:
        1. initialize() loads the snapshot (never creates a profile)
        2. create_profile() when the app starts with no identity and no profile
        3. CRUD while in guest mode, quota-checked on every create
        4. export_all() + clear_all() during migration, or clear_all() when
           the user discards guest data

    Ordering:
        list_notes() is newest-first (new notes are prepended).
        list_reminders() is creation order.
    """

    def __init__(
        self,
        path: Optional[str] = None,
        max_notes: Optional[int] = None,
        max_reminders: Optional[int] = None,
    ):
        self.path = Path(path or settings.guest_storage_path)
        self.max_notes = settings.guest_max_notes if max_notes is None else max_notes
        self.max_reminders = (
            settings.guest_max_reminders if max_reminders is None else max_reminders
        )
        self._profile: Optional[GuestProfile] = None
        self._notes: List[Note] = []
        self._reminders: List[Reminder] = []
        self._retired_for: Optional[str] = None
        self._loaded = False
        # Serializes read-modify-write cycles so two writers never persist stale state
        self._lock = asyncio.Lock()

    # ══════════════════════════════════════════════════════════════════════
    # Loading & Persistence
    # ══════════════════════════════════════════════════════════════════════

    async def initialize(self) -> None:
        """
        Load the persisted snapshot into memory. Idempotent.

        A missing file means "no guest yet". A corrupt file is logged and
        treated the same way. I/O errors other than "missing" raise
        StorageError so an unreadable snapshot is never overwritten.
        """
        async with self._lock:
            await self._load()

    async def _load(self) -> None:
        snapshot = await self._read_snapshot()
        profile = snapshot.profile
        if profile is not None:
            profile = profile.model_copy(update={"note_count": len(snapshot.notes)})
        self._profile = profile
        self._notes = list(snapshot.notes)
        self._reminders = list(snapshot.reminders)
        self._retired_for = snapshot.retired_for
        self._loaded = True
        logger.debug(
            "Guest store loaded from %s: profile=%s notes=%d reminders=%d",
            self.path,
            profile.id if profile else None,
            len(self._notes),
            len(self._reminders),
        )

    async def _ensure_loaded(self) -> None:
        if not self._loaded:
            await self._load()

    async def _read_snapshot(self) -> GuestSnapshot:
        if not self.path.exists():
            return GuestSnapshot()
        try:
            async with aiofiles.open(self.path, "r", encoding="utf-8") as f:
                raw = await f.read()
        except OSError as e:
            logger.error("Failed to read guest snapshot %s: %s", self.path, str(e))
            raise StorageError(
                message="Could not load your notes on this device.",
                context={"path": str(self.path), "os_error": str(e)},
            )
        if not raw.strip():
            return GuestSnapshot()
        try:
            return GuestSnapshot.model_validate_json(raw)
        except ValidationError as e:
            logger.error(
                "Guest snapshot %s is corrupt, starting empty: %s",
                self.path,
                e.errors()[:3],
            )
            return GuestSnapshot()

    async def _write_snapshot(self, snapshot: GuestSnapshot) -> None:
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                await f.write(snapshot.model_dump_json(indent=2))
                await f.flush()
                await _fsync(f.fileno())
            await aiofiles.os.replace(tmp_path, self.path)
        except OSError as e:
            logger.error("Failed to persist guest snapshot %s: %s", self.path, str(e))
            raise StorageError(context={"path": str(self.path), "os_error": str(e)})

    async def _commit(
        self,
        profile: Optional[GuestProfile],
        notes: List[Note],
        reminders: List[Reminder],
    ) -> None:
        """Persist the next state, then make it the in-memory state."""
        if profile is not None:
            profile = profile.model_copy(update={"note_count": len(notes)})
        await self._write_snapshot(
            GuestSnapshot(
                profile=profile,
                notes=notes,
                reminders=reminders,
                retired_for=self._retired_for,
            )
        )
        self._profile = profile
        self._notes = notes
        self._reminders = reminders

    # ══════════════════════════════════════════════════════════════════════
    # Profile & Usage
    # ══════════════════════════════════════════════════════════════════════

    async def create_profile(self) -> GuestProfile:
        """Create and persist a fresh, empty guest profile."""
        async with self._lock:
            await self._ensure_loaded()
            if self._profile is not None:
                raise AlreadyExistsError(context={"profile_id": self._profile.id})

            profile = GuestProfile(id=f"guest_{uuid.uuid4().hex}", note_count=0)
            await self._commit(profile, self._notes, self._reminders)
            logger.info("Guest profile created: %s", profile.id)
            return profile.model_copy()

    def get_profile(self) -> Optional[GuestProfile]:
        return self._profile.model_copy() if self._profile else None

    def usage(self) -> UsageCounters:
        """Counts derived from stored records; completed reminders still count."""
        return UsageCounters(
            notes=len(self._notes),
            reminders=len(self._reminders),
            max_notes=self.max_notes,
            max_reminders=self.max_reminders,
        )

    def has_data(self) -> bool:
        return self._profile is not None or bool(self._notes) or bool(self._reminders)

    @property
    def retired_for(self) -> Optional[str]:
        """Identity a migration already sent these records to, if any."""
        return self._retired_for

    def _require_profile(self) -> GuestProfile:
        if self._profile is None:
            raise NotFoundError(resource="guest profile")
        return self._profile

    # ══════════════════════════════════════════════════════════════════════
    # Notes
    # ══════════════════════════════════════════════════════════════════════

    async def create_note(self, data: NoteCreate) -> Note:
        """
        Create a guest note.

        Raises:
            NotFoundError: No guest profile exists yet
            QuotaExceededError: The note limit is reached (nothing is written)
            StorageError: The snapshot could not be persisted
        """
        async with self._lock:
            await self._ensure_loaded()
            profile = self._require_profile()
            check_quota(self.usage(), QuotaOperation.CREATE_NOTE).raise_for_denied()

            now = utc_now()
            note = Note(
                id=_new_record_id(),
                created_at=now,
                updated_at=now,
                origin=RecordOrigin.GUEST,
                **data.model_dump(),
            )
            await self._commit(profile, [note] + self._notes, self._reminders)
            logger.info(
                "Guest note created: %s (%d/%d)",
                note.id,
                len(self._notes),
                self.max_notes,
            )
            return note.model_copy(deep=True)

    def list_notes(self) -> List[Note]:
        return [n.model_copy(deep=True) for n in self._notes]

    def get_note(self, note_id: str) -> Note:
        return self._notes[self._note_index(note_id)].model_copy(deep=True)

    def _note_index(self, note_id: str) -> int:
        for index, note in enumerate(self._notes):
            if note.id == note_id:
                return index
        raise NotFoundError(resource="note", resource_id=note_id)

    async def update_note(self, note_id: str, changes: NoteUpdate) -> Note:
        async with self._lock:
            await self._ensure_loaded()
            index = self._note_index(note_id)

            updates = {
                field: value
                for field, value in changes.model_dump(exclude_unset=True).items()
                if value is not None or field not in _REQUIRED_NOTE_FIELDS
            }
            updates["updated_at"] = utc_now()
            updated = self._notes[index].model_copy(update=updates)

            notes = list(self._notes)
            notes[index] = updated
            await self._commit(self._profile, notes, self._reminders)
            logger.info("Guest note updated: %s (%s)", note_id, ", ".join(sorted(updates)))
            return updated.model_copy(deep=True)

    async def delete_note(self, note_id: str) -> None:
        async with self._lock:
            await self._ensure_loaded()
            index = self._note_index(note_id)
            notes = self._notes[:index] + self._notes[index + 1:]
            await self._commit(self._profile, notes, self._reminders)
            logger.info("Guest note deleted: %s (%d remaining)", note_id, len(notes))

    # ══════════════════════════════════════════════════════════════════════
    # Reminders
    # ══════════════════════════════════════════════════════════════════════

    async def create_reminder(self, data: ReminderCreate) -> Reminder:
        """
        Create a guest reminder, quota-checked against every stored reminder
        (completing one does not free a slot).

        Raises:
            NotFoundError: No guest profile exists yet
            QuotaExceededError: The reminder limit is reached (nothing is written)
        """
        async with self._lock:
            await self._ensure_loaded()
            profile = self._require_profile()
            check_quota(self.usage(), QuotaOperation.CREATE_REMINDER).raise_for_denied()

            reminder = Reminder(
                id=_new_record_id(),
                created_at=utc_now(),
                origin=RecordOrigin.GUEST,
                **data.model_dump(),
            )
            await self._commit(profile, self._notes, self._reminders + [reminder])
            logger.info("Guest reminder created: %s", reminder.id)
            return reminder.model_copy(deep=True)

    def list_reminders(self) -> List[Reminder]:
        return [r.model_copy(deep=True) for r in self._reminders]

    def list_active_reminders(self) -> List[Reminder]:
        return [r.model_copy(deep=True) for r in self._reminders if not r.is_completed]

    def _reminder_index(self, reminder_id: str) -> int:
        for index, reminder in enumerate(self._reminders):
            if reminder.id == reminder_id:
                return index
        raise NotFoundError(resource="reminder", resource_id=reminder_id)

    async def complete_reminder(self, reminder_id: str) -> Reminder:
        """Mark a reminder done. The record stays for history but leaves the active view."""
        async with self._lock:
            await self._ensure_loaded()
            index = self._reminder_index(reminder_id)
            current = self._reminders[index]
            if current.is_completed:
                return current.model_copy(deep=True)

            completed = current.model_copy(update={"is_completed": True})
            reminders = list(self._reminders)
            reminders[index] = completed
            await self._commit(self._profile, self._notes, reminders)
            logger.info("Guest reminder completed: %s", reminder_id)
            return completed.model_copy(deep=True)

    async def delete_reminder(self, reminder_id: str) -> None:
        async with self._lock:
            await self._ensure_loaded()
            index = self._reminder_index(reminder_id)
            reminders = self._reminders[:index] + self._reminders[index + 1:]
            await self._commit(self._profile, self._notes, reminders)
            logger.info("Guest reminder deleted: %s", reminder_id)

    # ══════════════════════════════════════════════════════════════════════
    # Migration Support
    # ══════════════════════════════════════════════════════════════════════

    async def export_all(self) -> GuestExport:
        """Detached deep copy of every guest note and reminder."""
        async with self._lock:
            await self._ensure_loaded()
            return GuestExport(
                notes=[n.model_copy(deep=True) for n in self._notes],
                reminders=[r.model_copy(deep=True) for r in self._reminders],
            )

    async def retire(self, identity_id: str) -> None:
        """
        Persist a marker that the records are being migrated to `identity_id`.

        Written before any record leaves the device. If the final
        clear_all() fails, the next load still carries the marker and the
        snapshot is discarded rather than migrated a second time.
        """
        async with self._lock:
            await self._ensure_loaded()
            await self._write_snapshot(
                GuestSnapshot(
                    profile=self._profile,
                    notes=self._notes,
                    reminders=self._reminders,
                    retired_for=identity_id,
                )
            )
            self._retired_for = identity_id
            logger.info("Guest snapshot marked as migrating to %s", identity_id)

    async def clear_all(self) -> None:
        """
        Irreversibly erase the guest profile, notes and reminders.

        Safe to call when nothing exists. Memory is reset only after the
        snapshot file is gone.
        """
        async with self._lock:
            tmp_path = self.path.with_name(self.path.name + ".tmp")
            try:
                for candidate in (tmp_path, self.path):
                    if await aiofiles.os.path.exists(candidate):
                        await aiofiles.os.remove(candidate)
            except OSError as e:
                logger.error("Failed to clear guest snapshot %s: %s", self.path, str(e))
                raise StorageError(
                    message="Could not clear guest data on this device.",
                    context={"path": str(self.path), "os_error": str(e)},
                )
            cleared_profile = self._profile.id if self._profile else None
            self._profile = None
            self._notes = []
            self._reminders = []
            self._retired_for = None
            self._loaded = True
            logger.info("Guest data cleared (profile=%s)", cleared_profile)
