"""
Rememberly Backend — Notes Route Handlers
===========================================

What:  Note CRUD for whichever store the current mode owns, plus the
       analyze flow that builds a note from raw content.
How:   Handlers are thin: every call goes through the ModeController, which
       applies guest quotas or scopes to the signed-in identity.

Caching:
    Note data changes with the mode (a sign-in swaps the whole list), so
    list responses are never cached.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, Response, status

from rememberly.routes.deps import get_analyzer, get_controller
from rememberly.schemas.api import ErrorResponse, NoteDraft
from rememberly.schemas.records import ModeState, Note, NoteCreate, NoteUpdate
from rememberly.services.interfaces import TextAnalyzer
from rememberly.services.mode_controller import ModeController
from rememberly.services.quota import QuotaOperation, check_quota

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Notes"])

_ERRORS = {
    404: {"description": "Note not found", "model": ErrorResponse},
    503: {"description": "Mode transition in progress", "model": ErrorResponse},
}


@router.get("/notes", response_model=List[Note], responses=_ERRORS, summary="List notes, newest first")
async def list_notes(
    response: Response,
    controller: ModeController = Depends(get_controller),
) -> List[Note]:
    notes = await controller.list_notes()
    response.headers["X-Total-Count"] = str(len(notes))
    response.headers["Cache-Control"] = "no-store"
    return notes


@router.post(
    "/notes",
    response_model=Note,
    status_code=status.HTTP_201_CREATED,
    responses={403: {"description": "Guest note limit reached", "model": ErrorResponse}, **_ERRORS},
    summary="Create a note",
)
async def create_note(
    body: NoteCreate,
    controller: ModeController = Depends(get_controller),
) -> Note:
    return await controller.create_note(body)


@router.post(
    "/notes/analyze",
    response_model=Note,
    status_code=status.HTTP_201_CREATED,
    responses={403: {"description": "Guest note limit reached", "model": ErrorResponse}, **_ERRORS},
    summary="Analyze raw content and save it as a note",
)
async def analyze_note(
    body: NoteDraft,
    controller: ModeController = Depends(get_controller),
    analyzer: TextAnalyzer = Depends(get_analyzer),
) -> Note:
    """
    Title, summarize and tag `content`, then save it in the current store.

    A guest at the note limit is refused before the analyzer is called.
    """
    if controller.current_mode == ModeState.GUEST:
        check_quota(controller.usage(), QuotaOperation.CREATE_NOTE).raise_for_denied()

    analysis = await analyzer.analyze(body.content, body.type)
    logger.info("Analysis produced title=%r with %d tags", analysis.title, len(analysis.tags))

    return await controller.create_note(
        NoteCreate(
            title=analysis.title,
            original_content=body.content,
            summary=analysis.summary,
            type=body.type,
            tags=analysis.tags,
            source_url=body.source_url,
            file_url=body.file_url,
        )
    )


@router.patch("/notes/{note_id}", response_model=Note, responses=_ERRORS, summary="Update a note")
async def update_note(
    note_id: str,
    body: NoteUpdate,
    controller: ModeController = Depends(get_controller),
) -> Note:
    return await controller.update_note(note_id, body)


@router.delete(
    "/notes/{note_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses=_ERRORS,
    summary="Delete a note",
)
async def delete_note(
    note_id: str,
    controller: ModeController = Depends(get_controller),
) -> Response:
    await controller.delete_note(note_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
