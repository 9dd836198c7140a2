"""
Rememberly Backend — Guest/Account Mode Controller
====================================================

What:  The single owner of "is this session guest or authenticated", and the
       unified CRUD API the rest of the application calls.
How:   A state machine guarded by one asyncio.Lock. Auth events are applied
       one at a time; each transition (including any migration it triggers)
       settles before the next event is processed. Transitions run in tasks
       the controller owns; a caller that gives up waiting never interrupts
       one halfway through a migration. CRUD calls dispatch to
       the GuestStore or the RemoteStore based on the current state.
Who:   Created once by the application factory and shared by every route.

State Machine:
    UNINITIALIZED ──(no identity)──────────────▶ GUEST
    UNINITIALIZED ──(identity, no guest data)──▶ AUTHENTICATED
    UNINITIALIZED ──(identity + guest data)────▶ MIGRATING
    GUEST ─────────(signed in)─────────────────▶ MIGRATING
    MIGRATING ─────(migration settles)─────────▶ AUTHENTICATED
    MIGRATING ─────(session not established)───▶ GUEST   (data intact)
    AUTHENTICATED ─(signed out)────────────────▶ GUEST

CRUD while MIGRATING (or before the first identity check) raises BusyError
without touching either backend, so a new guest write can never be created
and then migrated out from under itself, and a remote write can never race
the unsettled migration. Concurrent CRUD calls in GUEST or AUTHENTICATED are
not ordered against each other.
"""

import asyncio
import inspect
import logging
from typing import Awaitable, Callable, List, Optional, Set, TypeVar, Union

from rememberly.exceptions import (
    BusyError,
    InvalidTransitionError,
    SessionNotEstablishedError,
)
from rememberly.schemas.records import (
    GuestProfile,
    Identity,
    MigrationOutcome,
    ModeState,
    Note,
    NoteCreate,
    NoteUpdate,
    Reminder,
    ReminderCreate,
    SignedIn,
    SignedOut,
    UsageCounters,
)
from rememberly.services.guest_store import GuestStore
from rememberly.services.interfaces import AuthObserver, RemoteStore
from rememberly.services.migration import MigrationEngine

logger = logging.getLogger(__name__)

MigrationListener = Callable[[MigrationOutcome], object]
T = TypeVar("T")


class ModeController:
    """
    Process-wide identity mode state machine.

    Shared mutable state (`_state`, `_identity`, the cached guest profile)
    is written only while `_transition_lock` is held.
    """

    def __init__(
        self,
        guest_store: GuestStore,
        remote_store: RemoteStore,
        auth_observer: AuthObserver,
        migration_engine: Optional[MigrationEngine] = None,
    ):
        self.guest_store = guest_store
        self.remote_store = remote_store
        self.auth_observer = auth_observer
        self.migration_engine = migration_engine or MigrationEngine(
            guest_store, remote_store, auth_observer
        )
        self._state = ModeState.UNINITIALIZED
        self._identity: Optional[Identity] = None
        self._guest_profile: Optional[GuestProfile] = None
        self._transition_lock = asyncio.Lock()
        self._pending_transitions: Set["asyncio.Task"] = set()
        self._migration_listeners: List[MigrationListener] = []
        self.last_migration: Optional[MigrationOutcome] = None

    # ══════════════════════════════════════════════════════════════════════
    # Read-only State
    # ══════════════════════════════════════════════════════════════════════

    @property
    def current_mode(self) -> ModeState:
        return self._state

    @property
    def identity(self) -> Optional[Identity]:
        return self._identity

    @property
    def guest_profile(self) -> Optional[GuestProfile]:
        return self._guest_profile

    def usage(self) -> UsageCounters:
        """Guest usage in guest mode; zero counts with the limits otherwise."""
        if self._state == ModeState.GUEST:
            return self.guest_store.usage()
        return UsageCounters(
            notes=0,
            reminders=0,
            max_notes=self.guest_store.max_notes,
            max_reminders=self.guest_store.max_reminders,
        )

    def has_guest_data(self) -> bool:
        return self.guest_store.has_data()

    # ══════════════════════════════════════════════════════════════════════
    # Transitions
    # ══════════════════════════════════════════════════════════════════════

    async def resolve_initial_state(self) -> ModeState:
        """
        Ask the auth observer once who is signed in and settle the first mode.

        A session found at startup alongside leftover guest data (the guest
        force-quit after signing in) is migrated exactly like a sign-in.
        """
        return await self._run_transition(self._resolve_initial_state)

    async def on_signed_in(self, identity: Identity) -> Optional[MigrationOutcome]:
        """
        Apply a sign-in: migrate guest data, then switch to the remote store.

        Raises:
            InvalidTransitionError: Already authenticated
        """
        return await self._run_transition(self._apply_signed_in, identity)

    async def on_signed_out(self) -> None:
        """
        Apply a sign-out: back to guest mode with an existing or fresh profile.

        Remote calls already in flight are left to finish or fail on their own.

        Raises:
            InvalidTransitionError: Not authenticated
        """
        await self._run_transition(self._apply_signed_out)

    async def on_auth_event(self, event: Union[SignedIn, SignedOut]) -> None:
        """
        Listener wired to the AuthObserver.

        Events that do not apply to the current mode (a repeated SignedIn
        from a token refresh, a SignedOut while already a guest) are logged
        and ignored.
        """
        try:
            if isinstance(event, SignedIn):
                await self.on_signed_in(event.identity)
            else:
                await self.on_signed_out()
        except InvalidTransitionError as e:
            logger.info("Ignoring auth event: %s", e.message)

    async def clear_guest_data(self) -> GuestProfile:
        """Discard all guest data and start over with a fresh guest profile."""
        return await self._run_transition(self._clear_guest_data)

    async def wait_settled(self) -> None:
        """Wait for transitions still running after their callers stopped waiting."""
        while self._pending_transitions:
            await asyncio.wait(list(self._pending_transitions))

    # ── Transition runner ─────────────────────────────────────────────────

    async def _run_transition(self, body: Callable[..., Awaitable[T]], *args) -> T:
        """
        Run `body` under the transition lock in a task owned by the controller.

        Callers await the task through asyncio.shield(). A cancelled caller
        (a dropped request, a wait_for timeout) stops waiting, but the
        transition, including any migration, still runs to completion.
        """
        task = asyncio.create_task(self._locked(body, *args))
        self._pending_transitions.add(task)
        task.add_done_callback(self._transition_done)
        return await asyncio.shield(task)

    async def _locked(self, body: Callable[..., Awaitable[T]], *args) -> T:
        async with self._transition_lock:
            return await body(*args)

    def _transition_done(self, task: "asyncio.Task") -> None:
        self._pending_transitions.discard(task)
        if task.cancelled():
            return
        # Marks the error retrieved; a caller still waiting receives it through shield()
        error = task.exception()
        if error is not None:
            logger.debug("Transition ended with %s: %s", type(error).__name__, str(error))

    # ── Transition bodies (run with the lock held) ────────────────────────

    async def _resolve_initial_state(self) -> ModeState:
        if self._state != ModeState.UNINITIALIZED:
            return self._state

        try:
            identity = await self.auth_observer.get_current_identity()
        except Exception as e:
            logger.error("Identity check failed at startup, defaulting to guest: %s", str(e))
            identity = None

        await self._load_guest_store()

        if identity is None:
            await self._enter_guest()
        elif self.guest_store.has_data():
            logger.info("Existing session %s found with guest data; migrating", identity.id)
            await self._migrate_and_authenticate(identity)
        else:
            self._enter_authenticated(identity)
        return self._state

    async def _apply_signed_in(self, identity: Identity) -> MigrationOutcome:
        if self._state not in (ModeState.GUEST, ModeState.UNINITIALIZED):
            raise InvalidTransitionError("signed_in", self._state.value)
        if self._state == ModeState.UNINITIALIZED:
            await self._load_guest_store()
        return await self._migrate_and_authenticate(identity)

    async def _apply_signed_out(self) -> None:
        if self._state != ModeState.AUTHENTICATED:
            raise InvalidTransitionError("signed_out", self._state.value)
        await self._load_guest_store()
        await self._enter_guest()

    async def _clear_guest_data(self) -> GuestProfile:
        if self._require_mode() != ModeState.GUEST:
            raise InvalidTransitionError("clear_guest_data", self._state.value)
        await self.guest_store.clear_all()
        await self._enter_guest()
        return self._guest_profile

    async def _load_guest_store(self) -> None:
        """
        Load the guest snapshot, discarding one a finished migration left behind.

        A snapshot still marked as retired means the records were already
        sent to that account and only the final clear failed. Migrating it
        again would insert duplicates.
        """
        await self.guest_store.initialize()
        retired_for = self.guest_store.retired_for
        if retired_for is not None:
            logger.warning("Discarding guest data already migrated to %s", retired_for)
            await self.guest_store.clear_all()

    def add_migration_listener(self, listener: MigrationListener) -> Callable[[], None]:
        """Register a sync or async callback for migration outcomes (UI toasts)."""
        self._migration_listeners.append(listener)

        def remove() -> None:
            if listener in self._migration_listeners:
                self._migration_listeners.remove(listener)

        return remove

    # ── Transition helpers (caller holds the lock) ────────────────────────

    async def _enter_guest(self) -> None:
        profile = self.guest_store.get_profile()
        if profile is None:
            profile = await self.guest_store.create_profile()
        self._guest_profile = profile
        self._identity = None
        self._state = ModeState.GUEST
        usage = self.guest_store.usage()
        logger.info(
            "Mode → guest (profile=%s, notes=%d/%d, reminders=%d/%d)",
            profile.id,
            usage.notes,
            usage.max_notes,
            usage.reminders,
            usage.max_reminders,
        )

    def _enter_authenticated(self, identity: Identity) -> None:
        self._identity = identity
        self._guest_profile = None
        self._state = ModeState.AUTHENTICATED
        logger.info("Mode → authenticated (%s)", identity.id)

    async def _migrate_and_authenticate(self, identity: Identity) -> MigrationOutcome:
        self._state = ModeState.MIGRATING
        logger.info("Mode → migrating (%s)", identity.id)

        try:
            result = await self.migration_engine.migrate(identity)
            outcome = MigrationOutcome(identity_id=identity.id, result=result)
        except SessionNotEstablishedError as e:
            # Nothing left the device; stay a guest so the user can retry
            outcome = MigrationOutcome(
                identity_id=identity.id,
                error=e.message,
                error_code="session_not_established",
            )
            await self.guest_store.initialize()
            await self._enter_guest()
            await self._notify_migration(outcome)
            return outcome
        except asyncio.CancelledError:
            # Only the controller's own task can be cancelled here (shutdown);
            # never stay in MIGRATING
            logger.warning("Migration for %s cancelled; continuing signed in", identity.id)
            self._enter_authenticated(identity)
            self.last_migration = MigrationOutcome(
                identity_id=identity.id,
                error="Migration was interrupted",
                error_code="migration_cancelled",
            )
            raise
        except Exception as e:
            # A failed migration must not trap the user; continue signed in
            logger.error("Migration failed for %s: %s", identity.id, str(e), exc_info=True)
            outcome = MigrationOutcome(
                identity_id=identity.id,
                error="Failed to migrate guest data",
                error_code="migration_failed",
            )

        self._enter_authenticated(identity)
        await self._notify_migration(outcome)
        return outcome

    async def _notify_migration(self, outcome: MigrationOutcome) -> None:
        self.last_migration = outcome
        for listener in list(self._migration_listeners):
            try:
                ret = listener(outcome)
                if inspect.isawaitable(ret):
                    await ret
            except Exception as e:
                logger.error("Migration listener %r failed: %s", listener, str(e), exc_info=True)

    # ══════════════════════════════════════════════════════════════════════
    # Unified CRUD
    # ══════════════════════════════════════════════════════════════════════

    def _require_mode(self) -> ModeState:
        state = self._state
        if state in (ModeState.MIGRATING, ModeState.UNINITIALIZED):
            raise BusyError(context={"mode": state.value})
        return state

    def _remote_identity_id(self) -> str:
        return self._identity.id

    async def create_note(self, data: NoteCreate) -> Note:
        if self._require_mode() == ModeState.GUEST:
            return await self.guest_store.create_note(data)
        return await self.remote_store.create_note(self._remote_identity_id(), data)

    async def update_note(self, note_id: str, changes: NoteUpdate) -> Note:
        if self._require_mode() == ModeState.GUEST:
            return await self.guest_store.update_note(note_id, changes)
        return await self.remote_store.update_note(self._remote_identity_id(), note_id, changes)

    async def delete_note(self, note_id: str) -> None:
        if self._require_mode() == ModeState.GUEST:
            await self.guest_store.delete_note(note_id)
            return
        await self.remote_store.delete_note(self._remote_identity_id(), note_id)

    async def list_notes(self) -> List[Note]:
        if self._require_mode() == ModeState.GUEST:
            return self.guest_store.list_notes()
        return await self.remote_store.list_notes(self._remote_identity_id())

    async def create_reminder(self, data: ReminderCreate) -> Reminder:
        if self._require_mode() == ModeState.GUEST:
            return await self.guest_store.create_reminder(data)
        return await self.remote_store.create_reminder(self._remote_identity_id(), data)

    async def complete_reminder(self, reminder_id: str) -> Reminder:
        if self._require_mode() == ModeState.GUEST:
            return await self.guest_store.complete_reminder(reminder_id)
        return await self.remote_store.complete_reminder(self._remote_identity_id(), reminder_id)

    async def delete_reminder(self, reminder_id: str) -> None:
        if self._require_mode() == ModeState.GUEST:
            await self.guest_store.delete_reminder(reminder_id)
            return
        await self.remote_store.delete_reminder(self._remote_identity_id(), reminder_id)

    async def list_reminders(self) -> List[Reminder]:
        """Active reminders for the current mode."""
        if self._require_mode() == ModeState.GUEST:
            return self.guest_store.list_active_reminders()
        return await self.remote_store.list_active_reminders(self._remote_identity_id())
