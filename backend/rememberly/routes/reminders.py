"""
Rememberly Backend — Reminder Route Handlers

GET    /api/reminders                 active reminders, soonest first
POST   /api/reminders                 create (guest quota applies)
POST   /api/reminders/{id}/complete   mark done (idempotent)
DELETE /api/reminders/{id}
"""

from typing import List

from fastapi import APIRouter, Depends, Response, status

from rememberly.routes.deps import get_controller
from rememberly.schemas.api import ErrorResponse
from rememberly.schemas.records import Reminder, ReminderCreate
from rememberly.services.mode_controller import ModeController

router = APIRouter(prefix="/api", tags=["Reminders"])

_ERRORS = {
    404: {"description": "Reminder not found", "model": ErrorResponse},
    503: {"description": "Mode transition in progress", "model": ErrorResponse},
}


@router.get("/reminders", response_model=List[Reminder], responses=_ERRORS)
async def list_reminders(
    response: Response,
    controller: ModeController = Depends(get_controller),
) -> List[Reminder]:
    reminders = await controller.list_reminders()
    response.headers["X-Total-Count"] = str(len(reminders))
    return reminders


@router.post(
    "/reminders",
    response_model=Reminder,
    status_code=status.HTTP_201_CREATED,
    responses={403: {"description": "Guest reminder limit reached", "model": ErrorResponse}, **_ERRORS},
)
async def create_reminder(
    body: ReminderCreate,
    controller: ModeController = Depends(get_controller),
) -> Reminder:
    return await controller.create_reminder(body)


@router.post("/reminders/{reminder_id}/complete", response_model=Reminder, responses=_ERRORS)
async def complete_reminder(
    reminder_id: str,
    controller: ModeController = Depends(get_controller),
) -> Reminder:
    return await controller.complete_reminder(reminder_id)


@router.delete(
    "/reminders/{reminder_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses=_ERRORS,
)
async def delete_reminder(
    reminder_id: str,
    controller: ModeController = Depends(get_controller),
) -> Response:
    await controller.delete_reminder(reminder_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
