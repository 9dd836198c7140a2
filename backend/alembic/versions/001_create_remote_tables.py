"""Create remote notes and reminders tables

Revision ID: 001
Revises: None
Create Date: 2026-10-18 00:00:00.000000+00:00

What:  Tables for the authenticated user's notes and reminders, including
       everything migrated from guest mode.
How:   Portable column types (sa.Uuid, sa.JSON, timezone-aware DateTime) so
       the same revision runs on PostgreSQL and SQLite. Ids are generated by
       the application, not the database.

Rollback: downgrade() drops both tables (destructive).
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "remote_notes",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column("original_content", sa.Text(), nullable=False, server_default=""),
        sa.Column("summary", sa.Text(), nullable=False, server_default=""),
        sa.Column("type", sa.String(length=20), nullable=False, server_default="text"),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("source_url", sa.Text(), nullable=True),
        sa.Column("file_url", sa.Text(), nullable=True),
        # Written by the application: migrated notes keep their guest timestamps
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "type IN ('text', 'url', 'file', 'image')",
            name="ck_remote_notes_type",
        ),
    )
    op.create_index(
        "idx_remote_notes_user_created",
        "remote_notes",
        ["user_id", "created_at"],
    )

    op.create_table(
        "remote_reminders",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("note_id", sa.Uuid(), nullable=True),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("remind_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("priority", sa.String(length=10), nullable=False, server_default="medium"),
        sa.Column("is_completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("natural_input", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(
            ["note_id"],
            ["remote_notes.id"],
            name="fk_remote_reminders_note",
            ondelete="SET NULL",
        ),
        sa.CheckConstraint(
            "priority IN ('low', 'medium', 'high')",
            name="ck_remote_reminders_priority",
        ),
    )
    op.create_index(
        "idx_remote_reminders_user_active",
        "remote_reminders",
        ["user_id", "is_completed", "remind_at"],
    )


def downgrade() -> None:
    op.drop_index("idx_remote_reminders_user_active", table_name="remote_reminders")
    op.drop_table("remote_reminders")
    op.drop_index("idx_remote_notes_user_created", table_name="remote_notes")
    op.drop_table("remote_notes")
