"""
Rememberly Backend — SQLAlchemy Remote Store
==============================================

What:  The authenticated system of record: notes and reminders owned by an
       identity, stored in the relational database.
How:   One AsyncSession per call from an injected async_sessionmaker; every
       query filters on user_id. Driver errors are wrapped in
       RemoteStoreError with details kept in the context for logs.
Who:   ModeController (CRUD in authenticated mode), MigrationEngine (bulk
       inserts).

Id handling:
    Remote ids are UUIDs generated here. Record ids cross the API as strings;
    a string that is not a UUID cannot name a remote row and is reported
    as NotFoundError. Guest ids are never reused.
"""

import logging
import uuid
from typing import List, Optional

from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rememberly.database import get_session_factory
from rememberly.exceptions import NotFoundError, RememberlyError, RemoteStoreError
from rememberly.models.remote import RemoteNote, RemoteReminder
from rememberly.schemas.records import (
    Note,
    NoteCreate,
    NoteUpdate,
    RecordOrigin,
    Reminder,
    ReminderCreate,
    utc_now,
)
from rememberly.services.interfaces import RemoteStore

logger = logging.getLogger(__name__)

# Columns that cannot be cleared by a partial update
_REQUIRED_NOTE_FIELDS = {"title", "original_content", "summary", "type", "tags"}


def _parse_id(value: Optional[str]) -> Optional[uuid.UUID]:
    if value is None:
        return None
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def _note_from_row(row: RemoteNote) -> Note:
    return Note(
        id=str(row.id),
        title=row.title,
        original_content=row.original_content,
        summary=row.summary,
        type=row.type,
        tags=list(row.tags or []),
        source_url=row.source_url,
        file_url=row.file_url,
        created_at=row.created_at,
        updated_at=row.updated_at,
        origin=RecordOrigin.REMOTE,
    )


def _reminder_from_row(row: RemoteReminder) -> Reminder:
    return Reminder(
        id=str(row.id),
        note_id=str(row.note_id) if row.note_id else None,
        title=row.title,
        description=row.description,
        remind_at=row.remind_at,
        priority=row.priority,
        is_completed=row.is_completed,
        natural_input=row.natural_input,
        created_at=row.created_at,
        origin=RecordOrigin.REMOTE,
    )


class SQLAlchemyRemoteStore(RemoteStore):
    """
    RemoteStore backed by async SQLAlchemy.

    Args:
        session_factory: Defaults to the application factory from
            rememberly.database; tests pass one bound to SQLite.
    """

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        self._session_factory = session_factory

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            self._session_factory = get_session_factory()
        return self._session_factory

    def _wrap(self, operation: str, identity_id: str, e: Exception) -> RemoteStoreError:
        logger.error(
            "Remote store %s failed for %s: %s",
            operation,
            identity_id,
            str(e),
            exc_info=True,
        )
        return RemoteStoreError(
            context={"operation": operation, "error_type": type(e).__name__}
        )

    # ══════════════════════════════════════════════════════════════════════
    # Migration
    # ══════════════════════════════════════════════════════════════════════

    async def bulk_insert_notes(self, identity_id: str, notes: List[Note]) -> List[Note]:
        """
        Insert guest notes under `identity_id` in one transaction.

        Content and timestamps are preserved; ids are regenerated. The
        returned list is in input order.
        """
        if not notes:
            return []
        try:
            async with self.session_factory() as session:
                rows = [
                    RemoteNote(
                        id=uuid.uuid4(),
                        user_id=identity_id,
                        title=n.title,
                        original_content=n.original_content,
                        summary=n.summary,
                        type=n.type,
                        tags=list(n.tags),
                        source_url=n.source_url,
                        file_url=n.file_url,
                        created_at=n.created_at,
                        updated_at=n.updated_at,
                    )
                    for n in notes
                ]
                session.add_all(rows)
                await session.commit()
                return [_note_from_row(row) for row in rows]
        except Exception as e:
            raise self._wrap("bulk_insert_notes", identity_id, e)

    async def bulk_insert_reminders(
        self, identity_id: str, reminders: List[Reminder]
    ) -> List[Reminder]:
        if not reminders:
            return []
        try:
            async with self.session_factory() as session:
                rows = [
                    RemoteReminder(
                        id=uuid.uuid4(),
                        user_id=identity_id,
                        note_id=_parse_id(r.note_id),
                        title=r.title,
                        description=r.description,
                        remind_at=r.remind_at,
                        priority=r.priority,
                        is_completed=r.is_completed,
                        natural_input=r.natural_input,
                        created_at=r.created_at,
                    )
                    for r in reminders
                ]
                session.add_all(rows)
                await session.commit()
                return [_reminder_from_row(row) for row in rows]
        except Exception as e:
            raise self._wrap("bulk_insert_reminders", identity_id, e)

    # ══════════════════════════════════════════════════════════════════════
    # Notes
    # ══════════════════════════════════════════════════════════════════════

    async def _get_note_row(
        self, session: AsyncSession, identity_id: str, note_id: str
    ) -> RemoteNote:
        parsed = _parse_id(note_id)
        row = None
        if parsed is not None:
            result = await session.execute(
                select(RemoteNote).where(
                    RemoteNote.id == parsed,
                    RemoteNote.user_id == identity_id,
                )
            )
            row = result.scalar_one_or_none()
        if row is None:
            raise NotFoundError(resource="note", resource_id=note_id)
        return row

    async def create_note(self, identity_id: str, data: NoteCreate) -> Note:
        try:
            async with self.session_factory() as session:
                now = utc_now()
                row = RemoteNote(
                    id=uuid.uuid4(),
                    user_id=identity_id,
                    created_at=now,
                    updated_at=now,
                    **data.model_dump(),
                )
                session.add(row)
                await session.commit()
                logger.info("Remote note %s created for %s", row.id, identity_id)
                return _note_from_row(row)
        except Exception as e:
            raise self._wrap("create_note", identity_id, e)

    async def update_note(self, identity_id: str, note_id: str, changes: NoteUpdate) -> Note:
        try:
            async with self.session_factory() as session:
                row = await self._get_note_row(session, identity_id, note_id)
                for field, value in changes.model_dump(exclude_unset=True).items():
                    if value is None and field in _REQUIRED_NOTE_FIELDS:
                        continue
                    setattr(row, field, value)
                row.updated_at = utc_now()
                await session.commit()
                return _note_from_row(row)
        except RememberlyError:
            raise
        except Exception as e:
            raise self._wrap("update_note", identity_id, e)

    async def delete_note(self, identity_id: str, note_id: str) -> None:
        try:
            async with self.session_factory() as session:
                row = await self._get_note_row(session, identity_id, note_id)
                # Weak links: reminders outlive the note they pointed at
                linked = await session.execute(
                    select(RemoteReminder).where(RemoteReminder.note_id == row.id)
                )
                for reminder in linked.scalars().all():
                    reminder.note_id = None
                await session.delete(row)
                await session.commit()
                logger.info("Remote note %s deleted for %s", note_id, identity_id)
        except RememberlyError:
            raise
        except Exception as e:
            raise self._wrap("delete_note", identity_id, e)

    async def list_notes(self, identity_id: str) -> List[Note]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(RemoteNote)
                    .where(RemoteNote.user_id == identity_id)
                    .order_by(RemoteNote.created_at.desc())
                )
                return [_note_from_row(row) for row in result.scalars().all()]
        except Exception as e:
            raise self._wrap("list_notes", identity_id, e)

    # ══════════════════════════════════════════════════════════════════════
    # Reminders
    # ══════════════════════════════════════════════════════════════════════

    async def _get_reminder_row(
        self, session: AsyncSession, identity_id: str, reminder_id: str
    ) -> RemoteReminder:
        parsed = _parse_id(reminder_id)
        row = None
        if parsed is not None:
            result = await session.execute(
                select(RemoteReminder).where(
                    RemoteReminder.id == parsed,
                    RemoteReminder.user_id == identity_id,
                )
            )
            row = result.scalar_one_or_none()
        if row is None:
            raise NotFoundError(resource="reminder", resource_id=reminder_id)
        return row

    async def create_reminder(self, identity_id: str, data: ReminderCreate) -> Reminder:
        try:
            async with self.session_factory() as session:
                note_ref = None
                if data.note_id is not None:
                    note_ref = (await self._get_note_row(session, identity_id, data.note_id)).id
                row = RemoteReminder(
                    id=uuid.uuid4(),
                    user_id=identity_id,
                    note_id=note_ref,
                    title=data.title,
                    description=data.description,
                    remind_at=data.remind_at,
                    priority=data.priority,
                    is_completed=False,
                    natural_input=data.natural_input,
                    created_at=utc_now(),
                )
                session.add(row)
                await session.commit()
                logger.info("Remote reminder %s created for %s", row.id, identity_id)
                return _reminder_from_row(row)
        except RememberlyError:
            raise
        except Exception as e:
            raise self._wrap("create_reminder", identity_id, e)

    async def list_active_reminders(self, identity_id: str) -> List[Reminder]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(RemoteReminder)
                    .where(
                        RemoteReminder.user_id == identity_id,
                        RemoteReminder.is_completed.is_(False),
                    )
                    .order_by(RemoteReminder.remind_at.asc())
                )
                return [_reminder_from_row(row) for row in result.scalars().all()]
        except Exception as e:
            raise self._wrap("list_active_reminders", identity_id, e)

    async def complete_reminder(self, identity_id: str, reminder_id: str) -> Reminder:
        try:
            async with self.session_factory() as session:
                row = await self._get_reminder_row(session, identity_id, reminder_id)
                row.is_completed = True
                await session.commit()
                return _reminder_from_row(row)
        except RememberlyError:
            raise
        except Exception as e:
            raise self._wrap("complete_reminder", identity_id, e)

    async def delete_reminder(self, identity_id: str, reminder_id: str) -> None:
        try:
            async with self.session_factory() as session:
                row = await self._get_reminder_row(session, identity_id, reminder_id)
                await session.delete(row)
                await session.commit()
        except RememberlyError:
            raise
        except Exception as e:
            raise self._wrap("delete_reminder", identity_id, e)

    async def health_check(self) -> bool:
        """Runs SELECT 1; used by GET /health."""
        try:
            async with self.session_factory() as session:
                await session.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.warning("Remote store health check failed: %s", str(e))
            return False
