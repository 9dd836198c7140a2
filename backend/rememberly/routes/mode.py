"""
Rememberly Backend — Mode & Auth Route Handlers
=================================================

What:  Exposes the identity mode, guest usage, the last migration outcome,
       and accepts auth events relayed by the client.
How:   POST /api/auth/events drives the SessionAuthObserver, which awaits the
       ModeController's transition, so the response already reflects the
       settled mode (and any migration it triggered).

Endpoints:
    GET  /api/mode          current mode, identity, guest profile
    GET  /api/usage         guest counts against limits
    GET  /api/migration     last migration outcome (404 if none yet)
    POST /api/auth/events   signed_in / signed_out
    POST /api/guest/reset   discard guest data, start a fresh guest profile
"""

import logging

from fastapi import APIRouter, Depends

from rememberly.exceptions import NotFoundError
from rememberly.routes.deps import get_auth_observer, get_controller
from rememberly.schemas.api import (
    AuthEventRequest,
    AuthEventResponse,
    ErrorResponse,
    ModeResponse,
    UsageResponse,
)
from rememberly.schemas.records import MigrationOutcome
from rememberly.services.auth import SessionAuthObserver
from rememberly.services.mode_controller import ModeController

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Mode"])


def _mode_response(controller: ModeController) -> ModeResponse:
    return ModeResponse(
        mode=controller.current_mode,
        identity=controller.identity,
        guest_profile=controller.guest_profile,
        has_guest_data=controller.has_guest_data(),
    )


@router.get("/mode", response_model=ModeResponse, summary="Current identity mode")
async def get_mode(controller: ModeController = Depends(get_controller)) -> ModeResponse:
    return _mode_response(controller)


@router.get("/usage", response_model=UsageResponse, summary="Guest usage against limits")
async def get_usage(controller: ModeController = Depends(get_controller)) -> UsageResponse:
    return UsageResponse.from_counters(controller.current_mode, controller.usage())


@router.get(
    "/migration",
    response_model=MigrationOutcome,
    responses={404: {"description": "No migration has run", "model": ErrorResponse}},
    summary="Last migration outcome",
)
async def get_last_migration(
    controller: ModeController = Depends(get_controller),
) -> MigrationOutcome:
    if controller.last_migration is None:
        raise NotFoundError(resource="migration")
    return controller.last_migration


@router.post(
    "/auth/events",
    response_model=AuthEventResponse,
    responses={422: {"description": "signed_in without identity"}},
    summary="Relay an auth provider event",
    description=(
        "Applies a sign-in or sign-out. A sign-in from guest mode migrates the "
        "guest's notes and reminders before the response is sent."
    ),
)
async def post_auth_event(
    body: AuthEventRequest,
    controller: ModeController = Depends(get_controller),
    observer: SessionAuthObserver = Depends(get_auth_observer),
) -> AuthEventResponse:
    previous_outcome = controller.last_migration

    if body.event == "signed_in":
        await observer.sign_in(body.identity)
    else:
        await observer.sign_out()

    outcome = controller.last_migration
    return AuthEventResponse(
        mode=controller.current_mode,
        migration=outcome if outcome is not previous_outcome else None,
    )


@router.post(
    "/guest/reset",
    response_model=ModeResponse,
    responses={409: {"description": "Not in guest mode", "model": ErrorResponse}},
    summary="Discard guest data",
)
async def reset_guest(controller: ModeController = Depends(get_controller)) -> ModeResponse:
    profile = await controller.clear_guest_data()
    logger.info("Guest data cleared; new profile %s", profile.id)
    return _mode_response(controller)
