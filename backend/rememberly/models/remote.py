"""
Rememberly Backend — Remote Store ORM Models
==============================================

What:  Tables backing the authenticated user's notes and reminders.
How:   SQLAlchemy 2.0 typed mappings; generic Uuid/JSON/DateTime types so the
       same models run on PostgreSQL and on SQLite in tests.
Who:   Used by SQLAlchemyRemoteStore; schema managed by Alembic
       (alembic/versions/001_create_remote_tables.py).

Table Design:
    - user_id on every row: all queries are scoped to one identity
    - created_at/updated_at are written by the application so migrated guest
      notes keep their original timestamps
    - reminders.note_id is nullable with ON DELETE SET NULL: a weak link
"""

import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from rememberly.database import Base
from rememberly.schemas.records import utc_now


class RemoteNote(Base):
    __tablename__ = "remote_notes"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    original_content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    summary: Mapped[str] = mapped_column(Text, nullable=False, default="")
    type: Mapped[str] = mapped_column(String(20), nullable=False, default="text")
    tags: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    source_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    file_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    # Primary query: "this user's notes, newest first"
    __table_args__ = (
        Index("idx_remote_notes_user_created", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<RemoteNote(id={self.id}, user_id='{self.user_id}')>"


class RemoteReminder(Base):
    __tablename__ = "remote_reminders"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    note_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("remote_notes.id", ondelete="SET NULL"), nullable=True
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    remind_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    priority: Mapped[str] = mapped_column(String(10), nullable=False, default="medium")
    is_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    natural_input: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    # Active reminders view: "this user's open reminders, soonest first"
    __table_args__ = (
        Index("idx_remote_reminders_user_active", "user_id", "is_completed", "remind_at"),
    )

    def __repr__(self) -> str:
        return f"<RemoteReminder(id={self.id}, user_id='{self.user_id}', done={self.is_completed})>"
