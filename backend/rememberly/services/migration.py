"""
Rememberly Backend — Guest → Account Migration Engine
=======================================================

What:  Moves every guest note and reminder into the remote store under a
       newly authenticated identity, then retires the local guest state.
How:   Snapshot → settle wait → verify session → batched note inserts →
       one reminder insert → clear local store → report counts.
Who:   Invoked by ModeController on the guest → authenticated transition
       (and at startup when a session and guest data both exist). The
       controller guarantees at most one invocation per transition.

Migration Flow:
    ┌──────────┐   ┌────────┐   ┌──────────────┐   ┌────────────┐   ┌───────────┐
    │ Export   │──▶│ Settle │──▶│ Verify (×3)  │──▶│ Notes (×B) │──▶│ Reminders │──┐
    └──────────┘   └────────┘   └──────────────┘   └────────────┘   └───────────┘  │
         │ empty                       │ no match                                    ▼
         └─────────────────────────────┼──────────────────────────────────▶ clear_all()
                                       ▼
                        SessionNotEstablishedError (local data untouched)

Failure policy:
    - Session never matches: abort before any remote write, keep local data
    - A note batch fails: log it, count it, continue with the next batch
    - The reminder insert fails: log it, keep the migrated notes
    - Anything migrated or not, local guest data is cleared once transfer
      has been attempted, so a retry can never insert duplicates. Notes in
      a failed batch are lost; the result's counts make that visible.
    - Before the first remote write the snapshot is marked retired. If the
      final clear still fails after retries, the marker keeps the next load
      from migrating the same records again.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional

from tenacity import (
    AsyncRetrying,
    RetryError,
    before_sleep_log,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    wait_fixed,
)

from rememberly.config import settings
from rememberly.exceptions import SessionNotEstablishedError, StorageError
from rememberly.schemas.records import Identity, MigrationResult, Note, Reminder
from rememberly.services.guest_store import GuestStore
from rememberly.services.interfaces import AuthObserver, RemoteStore

logger = logging.getLogger(__name__)


class MigrationEngine:
    """
    One-shot transfer of guest records to the remote store.

    Timing constants default to the configured values; tests pass zeros.
    `sleep` is injectable so both the settle wait and the verification
    backoff can be observed without real delays.
    """

    def __init__(
        self,
        guest_store: GuestStore,
        remote_store: RemoteStore,
        auth_observer: AuthObserver,
        settle_seconds: Optional[float] = None,
        verify_attempts: Optional[int] = None,
        verify_backoff_seconds: Optional[float] = None,
        batch_size: Optional[int] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.guest_store = guest_store
        self.remote_store = remote_store
        self.auth_observer = auth_observer
        self.settle_seconds = (
            settings.migration_settle_seconds if settle_seconds is None else settle_seconds
        )
        self.verify_attempts = (
            settings.migration_verify_attempts if verify_attempts is None else verify_attempts
        )
        self.verify_backoff_seconds = (
            settings.migration_verify_backoff_seconds
            if verify_backoff_seconds is None
            else verify_backoff_seconds
        )
        self.batch_size = (
            settings.migration_note_batch_size if batch_size is None else batch_size
        )
        if self.verify_attempts < 1 or self.batch_size < 1:
            raise ValueError("verify_attempts and batch_size must be at least 1")
        self._sleep = sleep

    async def migrate(self, identity: Identity) -> MigrationResult:
        """
        Run the full migration for `identity`.

        Returns:
            MigrationResult with exact migrated/total counts (possibly partial)

        Raises:
            SessionNotEstablishedError: The identity could not be confirmed;
                nothing was sent and local data is intact
        """
        export = await self.guest_store.export_all()
        result = MigrationResult(
            notes_total=len(export.notes),
            reminders_total=len(export.reminders),
        )

        if export.is_empty:
            logger.info("No guest data to migrate for %s; retiring guest profile", identity.id)
            await self.guest_store.clear_all()
            return result

        logger.info(
            "Starting migration of %d notes and %d reminders to %s",
            result.notes_total,
            result.reminders_total,
            identity.id,
        )

        # ── Step 1: Let the provider finish propagating the new session ───
        if self.settle_seconds > 0:
            await self._sleep(self.settle_seconds)

        # ── Step 2: Confirm the backend sees the target identity ──────────
        await self._verify_session(identity)
        await self.guest_store.retire(identity.id)

        # ── Step 3: Notes, best-effort per batch ──────────────────────────
        note_id_map = await self._transfer_notes(identity, export.notes, result)

        # ── Step 4: Reminders, one call ───────────────────────────────────
        await self._transfer_reminders(identity, export.reminders, note_id_map, result)

        # ── Step 5: Retire the guest ──────────────────────────────────────
        await self._clear_guest_store(identity)

        log = logger.warning if result.is_partial else logger.info
        log("Migration for %s finished: %s", identity.id, result.describe())
        return result

    # ══════════════════════════════════════════════════════════════════════
    # Session Verification
    # ══════════════════════════════════════════════════════════════════════

    async def _check_session(self, identity: Identity) -> bool:
        current = await self.auth_observer.get_current_identity()
        matched = current is not None and current.id == identity.id
        if not matched:
            logger.warning(
                "Session verification for %s failed (current=%s)",
                identity.id,
                current.id if current else None,
            )
        return matched

    async def _verify_session(self, identity: Identity) -> None:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.verify_attempts),
            wait=wait_fixed(self.verify_backoff_seconds),
            # A provider error counts as a failed attempt, same as a mismatch
            retry=retry_if_result(lambda matched: not matched)
            | retry_if_exception_type(Exception),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self._sleep,
        )
        try:
            await retrying(self._check_session, identity)
        except RetryError as e:
            last = e.last_attempt.exception() if e.last_attempt else None
            logger.error(
                "User session could not be verified after %d attempts for %s%s",
                self.verify_attempts,
                identity.id,
                f": {last}" if last else "",
            )
            raise SessionNotEstablishedError(
                identity_id=identity.id,
                attempts=self.verify_attempts,
            )

    async def _clear_guest_store(self, identity: Identity) -> None:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.verify_attempts),
            wait=wait_fixed(self.verify_backoff_seconds),
            retry=retry_if_exception_type(StorageError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self._sleep,
            reraise=True,
        )
        try:
            await retrying(self.guest_store.clear_all)
        except StorageError as e:
            # The retirement marker is still on disk; the next load discards it
            logger.error(
                "Guest store could not be cleared after migrating to %s: %s",
                identity.id,
                e.message,
            )

    # ══════════════════════════════════════════════════════════════════════
    # Transfers
    # ══════════════════════════════════════════════════════════════════════

    async def _transfer_notes(
        self,
        identity: Identity,
        notes: List[Note],
        result: MigrationResult,
    ) -> Dict[str, str]:
        """Insert notes batch by batch; returns guest id → remote id for inserted notes."""
        note_id_map: Dict[str, str] = {}

        for batch_index, start in enumerate(range(0, len(notes), self.batch_size)):
            batch = notes[start:start + self.batch_size]
            try:
                inserted = await self.remote_store.bulk_insert_notes(identity.id, batch)
            except Exception as e:
                result.failed_batches += 1
                logger.error(
                    "Note batch %d (%d notes) failed to migrate for %s: %s",
                    batch_index,
                    len(batch),
                    identity.id,
                    str(e),
                    exc_info=True,
                )
                continue

            result.notes_migrated += len(inserted)
            if len(inserted) == len(batch):
                for guest_note, remote_note in zip(batch, inserted):
                    note_id_map[guest_note.id] = remote_note.id
            else:
                logger.warning(
                    "Note batch %d returned %d rows for %d notes; reminder links dropped",
                    batch_index,
                    len(inserted),
                    len(batch),
                )
            logger.info(
                "Note batch %d migrated: %d notes (%d/%d so far)",
                batch_index,
                len(inserted),
                result.notes_migrated,
                result.notes_total,
            )

        return note_id_map

    async def _transfer_reminders(
        self,
        identity: Identity,
        reminders: List[Reminder],
        note_id_map: Dict[str, str],
        result: MigrationResult,
    ) -> None:
        if not reminders:
            return

        # Guest note ids mean nothing remotely; point at the new copy or at nothing
        relinked = [
            r.model_copy(update={"note_id": note_id_map.get(r.note_id)}) if r.note_id else r
            for r in reminders
        ]
        try:
            inserted = await self.remote_store.bulk_insert_reminders(identity.id, relinked)
        except Exception as e:
            result.reminders_failed = True
            logger.error(
                "Error migrating %d reminders for %s: %s",
                len(relinked),
                identity.id,
                str(e),
                exc_info=True,
            )
            return

        result.reminders_migrated = len(inserted)
        logger.info("Successfully migrated %d reminders", result.reminders_migrated)
