"""
Rememberly Backend — Migration Engine Unit Tests
==================================================

What:  MigrationEngine against a real GuestStore and the FakeRemoteStore.
How:   `sleep` is an AsyncMock, so settle and backoff waits are asserted
       without actually waiting.

What we test:
    ✅ Empty guest store: no remote calls, guest profile retired
    ✅ Full transfer with exact counts and the guest store cleared
    ✅ One failing note batch: others still migrate, counts are exact
    ✅ Reminder insert failure never rolls back notes
    ✅ Session never matches: SessionNotEstablishedError, zero remote calls,
       guest records and snapshot bytes unchanged
    ✅ A clear that keeps failing leaves the snapshot marked as migrated
    ✅ Session matches on a later attempt
    ✅ Reminder note links rewritten to remote ids (or dropped)
"""

from unittest.mock import AsyncMock, patch

import pytest

from rememberly.exceptions import SessionNotEstablishedError, StorageError
from rememberly.schemas.records import Identity, RecordOrigin
from rememberly.services.guest_store import GuestStore
from rememberly.services.migration import MigrationEngine

from conftest import make_note, make_reminder


async def _seed(guest_store, notes=0, reminders=0):
    await guest_store.initialize()
    if guest_store.get_profile() is None:
        await guest_store.create_profile()
    created = [await guest_store.create_note(make_note(f"Note {i}")) for i in range(notes)]
    for i in range(reminders):
        await guest_store.create_reminder(make_reminder(f"Reminder {i}"))
    return created


class TestMigrationEmpty:

    @pytest.mark.asyncio
    async def test_empty_store_makes_no_remote_calls(
        self, guest_store, remote_store, auth_observer, migration_engine, identity, sleep_mock
    ):
        await _seed(guest_store)
        await auth_observer.sign_in(identity)

        result = await migration_engine.migrate(identity)

        assert result.notes_total == 0 and result.reminders_total == 0
        assert remote_store.calls == []
        assert guest_store.get_profile() is None
        sleep_mock.assert_not_awaited()


class TestMigrationTransfer:

    @pytest.mark.asyncio
    async def test_full_transfer_clears_guest_store(
        self, guest_store, remote_store, auth_observer, migration_engine, identity
    ):
        await _seed(guest_store, notes=2, reminders=1)
        await auth_observer.sign_in(identity)

        result = await migration_engine.migrate(identity)

        assert result.notes_migrated == 2
        assert result.reminders_migrated == 1
        assert not result.is_partial
        assert result.describe() == "Migrated 2 of 2 notes and 1 of 1 reminders"

        assert not guest_store.has_data()
        migrated = remote_store.notes[identity.id]
        assert all(n.origin == RecordOrigin.REMOTE for n in migrated)
        assert {n.title for n in migrated} == {"Note 0", "Note 1"}

    @pytest.mark.asyncio
    async def test_guest_timestamps_are_preserved(
        self, guest_store, remote_store, auth_observer, migration_engine, identity
    ):
        [note] = await _seed(guest_store, notes=1)
        await auth_observer.sign_in(identity)

        await migration_engine.migrate(identity)

        [remote] = remote_store.notes[identity.id]
        assert remote.created_at == note.created_at
        assert remote.id != note.id

    @pytest.mark.asyncio
    async def test_failed_batch_is_skipped_and_counted(
        self, guest_store, remote_store, auth_observer, identity, sleep_mock
    ):
        guest_store.max_notes = 25
        await _seed(guest_store, notes=25)
        await auth_observer.sign_in(identity)
        remote_store.fail_note_batches = {1}
        engine = MigrationEngine(
            guest_store, remote_store, auth_observer,
            settle_seconds=0, verify_backoff_seconds=0, batch_size=10, sleep=sleep_mock,
        )

        result = await engine.migrate(identity)

        assert result.notes_total == 25
        assert result.notes_migrated == 15
        assert result.failed_batches == 1
        assert result.is_partial
        assert remote_store.call_names().count("bulk_insert_notes") == 3
        # Local data is cleared regardless of the partial transfer
        assert not guest_store.has_data()

    @pytest.mark.asyncio
    async def test_reminder_failure_keeps_migrated_notes(
        self, guest_store, remote_store, auth_observer, migration_engine, identity
    ):
        await _seed(guest_store, notes=2, reminders=2)
        await auth_observer.sign_in(identity)
        remote_store.fail_reminders = True

        result = await migration_engine.migrate(identity)

        assert result.notes_migrated == 2
        assert result.reminders_migrated == 0
        assert result.reminders_failed
        assert len(remote_store.notes[identity.id]) == 2

    @pytest.mark.asyncio
    async def test_failed_clear_is_retried_and_leaves_retirement_marker(
        self, guest_store, guest_path, remote_store, auth_observer, migration_engine, identity
    ):
        await _seed(guest_store, notes=2)
        await auth_observer.sign_in(identity)

        with patch.object(guest_store, "clear_all", AsyncMock(side_effect=StorageError())):
            result = await migration_engine.migrate(identity)
            assert guest_store.clear_all.await_count == 3

        assert result.notes_migrated == 2
        restarted = GuestStore(path=guest_path)
        await restarted.initialize()
        assert restarted.retired_for == identity.id
        assert len(restarted.list_notes()) == 2

    @pytest.mark.asyncio
    async def test_settle_wait_precedes_verification(
        self, guest_store, remote_store, auth_observer, identity, sleep_mock
    ):
        await _seed(guest_store, notes=1)
        await auth_observer.sign_in(identity)
        engine = MigrationEngine(
            guest_store, remote_store, auth_observer,
            settle_seconds=2.0, verify_backoff_seconds=0, sleep=sleep_mock,
        )

        await engine.migrate(identity)

        sleep_mock.assert_any_await(2.0)


class TestMigrationSessionVerification:

    @pytest.mark.asyncio
    async def test_session_never_matches_aborts_without_remote_calls(
        self, guest_store, guest_path, remote_store, auth_observer, migration_engine, identity
    ):
        await _seed(guest_store, notes=2, reminders=1)
        await auth_observer.sign_in(Identity(id="someone-else"))
        notes_before = guest_store.list_notes()
        reminders_before = guest_store.list_reminders()
        with open(guest_path, "rb") as f:
            snapshot_before = f.read()

        with pytest.raises(SessionNotEstablishedError) as exc_info:
            await migration_engine.migrate(identity)

        assert exc_info.value.attempts == 3
        assert remote_store.calls == []
        assert guest_store.list_notes() == notes_before
        assert guest_store.list_reminders() == reminders_before
        with open(guest_path, "rb") as f:
            assert f.read() == snapshot_before

        restarted = GuestStore(path=guest_path)
        await restarted.initialize()
        assert restarted.list_notes() == notes_before
        assert restarted.list_reminders() == reminders_before
        assert restarted.retired_for is None

    @pytest.mark.asyncio
    async def test_provider_errors_count_as_failed_attempts(
        self, guest_store, remote_store, migration_engine, identity
    ):
        await _seed(guest_store, notes=1)
        migration_engine.auth_observer = AsyncMock()
        migration_engine.auth_observer.get_current_identity = AsyncMock(
            side_effect=ConnectionError("auth provider down")
        )

        with pytest.raises(SessionNotEstablishedError):
            await migration_engine.migrate(identity)

        assert migration_engine.auth_observer.get_current_identity.await_count == 3
        assert remote_store.calls == []
        assert guest_store.has_data()

    @pytest.mark.asyncio
    async def test_session_matching_on_third_attempt_succeeds(
        self, guest_store, remote_store, migration_engine, identity
    ):
        await _seed(guest_store, notes=1)
        migration_engine.auth_observer = AsyncMock()
        migration_engine.auth_observer.get_current_identity = AsyncMock(
            side_effect=[None, None, identity]
        )

        result = await migration_engine.migrate(identity)

        assert result.notes_migrated == 1
        assert migration_engine.auth_observer.get_current_identity.await_count == 3


class TestReminderRelinking:

    @pytest.mark.asyncio
    async def test_note_links_point_at_remote_copies(
        self, guest_store, remote_store, auth_observer, migration_engine, identity
    ):
        [guest_note] = await _seed(guest_store, notes=1)
        await guest_store.create_reminder(make_reminder("Linked", note_id=guest_note.id))
        await guest_store.create_reminder(make_reminder("Unlinked"))
        await auth_observer.sign_in(identity)

        await migration_engine.migrate(identity)

        [remote_note] = remote_store.notes[identity.id]
        reminders = {r.title: r for r in remote_store.reminders[identity.id]}
        assert reminders["Linked"].note_id == remote_note.id
        assert reminders["Unlinked"].note_id is None

    @pytest.mark.asyncio
    async def test_links_to_untransferred_notes_are_dropped(
        self, guest_store, remote_store, auth_observer, migration_engine, identity
    ):
        [guest_note] = await _seed(guest_store, notes=1)
        await guest_store.create_reminder(make_reminder("Orphan", note_id=guest_note.id))
        await auth_observer.sign_in(identity)
        remote_store.fail_note_batches = {0}

        result = await migration_engine.migrate(identity)

        assert result.notes_migrated == 0
        assert result.reminders_migrated == 1
        [reminder] = remote_store.reminders[identity.id]
        assert reminder.note_id is None


class TestEngineConfiguration:

    def test_rejects_zero_attempts(self, guest_store, remote_store, auth_observer):
        with pytest.raises(ValueError):
            MigrationEngine(guest_store, remote_store, auth_observer, verify_attempts=0)

    def test_rejects_zero_batch_size(self, guest_store, remote_store, auth_observer):
        with pytest.raises(ValueError):
            MigrationEngine(guest_store, remote_store, auth_observer, batch_size=0)
