"""
Rememberly Backend — Session Auth Observer
============================================

What:  In-process AuthObserver the host application drives.
How:   The host calls sign_in(identity) / sign_out() when its auth provider
       reports a change; the observer records the identity and awaits every
       subscriber in turn, so the caller knows the transition has settled
       when sign_in() returns.
Who:   Wired to ModeController.on_auth_event in main.py; polled by the
       MigrationEngine through get_current_identity().

Stale sessions:
    A remembered session can outlive its server-side record (the provider
    answers "Session from session_id claim in JWT does not exist"). An
    optional `session_validator` is consulted on every identity query; when
    it reports the session gone, the identity is dropped and None returned.
"""

import logging
from typing import Awaitable, Callable, List, Optional

from rememberly.schemas.records import Identity, SignedIn, SignedOut
from rememberly.services.interfaces import AuthListener, AuthObserver, Unsubscribe

logger = logging.getLogger(__name__)

SessionValidator = Callable[[Identity], Awaitable[bool]]


class SessionAuthObserver(AuthObserver):

    def __init__(
        self,
        identity: Optional[Identity] = None,
        session_validator: Optional[SessionValidator] = None,
    ):
        self._identity = identity
        self._session_validator = session_validator
        self._listeners: List[AuthListener] = []

    async def get_current_identity(self) -> Optional[Identity]:
        identity = self._identity
        if identity is None:
            return None
        if self._session_validator is not None and not await self._session_validator(identity):
            logger.warning("Session for %s no longer exists; treating as signed out", identity.id)
            self._identity = None
            return None
        return identity.model_copy()

    def subscribe(self, listener: AuthListener) -> Unsubscribe:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def sign_in(self, identity: Identity) -> None:
        self._identity = identity
        logger.info("Auth state changed: signed_in %s", identity.id)
        await self._emit(SignedIn(identity=identity))

    async def sign_out(self) -> None:
        previous = self._identity.id if self._identity else None
        self._identity = None
        logger.info("Auth state changed: signed_out %s", previous)
        await self._emit(SignedOut())

    async def _emit(self, event) -> None:
        # Every subscriber sees every event, even if an earlier one fails
        for listener in list(self._listeners):
            try:
                await listener(event)
            except Exception as e:
                logger.error(
                    "Auth listener %r failed on %s: %s",
                    listener,
                    event.kind,
                    str(e),
                    exc_info=True,
                )
