"""
Ticket wizard HTTP routes — POST /api/tickets/wizard/{step1,step2,step3,complete},
                           GET  /api/tickets/{ticket_id}

Every wizard call carries the client's wizard session id in the x-session-id
header. Step payloads are re-validated here with the same rules the client runs
and checkpointed in storage under wizard:{session_id} (24h TTL). complete
persists the ticket and drops the checkpoint.

Logs carry session_id / ticket_id only; truck and jobsite ids stay out of logs.
"""
from __future__ import annotations

import logging
from typing import Any, List, Optional

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from tracker.cache import KeyValueStorage, clear_checkpoint, set_checkpoint
from tracker.database import get_db
from tracker.errors import WizardValidationError
from tracker.store import get_ticket, save_ticket
from tracker.wizard.schemas import (
    BasicInfo,
    ErrorBody,
    ErrorDetail,
    ErrorResponse,
    ImageRef,
    TicketSubmission,
)
from tracker.wizard.validator import (
    validate_basic_info,
    validate_categories,
    validate_images,
    validate_submission,
)

router = APIRouter(prefix="/api/tickets", tags=["tickets"])
logger = logging.getLogger(__name__)


class ImageStep(BaseModel):
    images: List[ImageRef] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _storage(request: Request) -> KeyValueStorage:
    return request.app.state.storage


def require_session_id(x_session_id: Optional[str] = Header(default=None)) -> str:
    if not x_session_id:
        raise HTTPException(status_code=400, detail="Missing x-session-id header")
    return x_session_id


def _make_validation_error_response(exc: WizardValidationError, message: str) -> JSONResponse:
    details = [ErrorDetail(field=v.get("field"), issue=v["issue"]) for v in exc.violations]
    body = ErrorResponse(
        error=ErrorBody(code="VALIDATION_ERROR", message=message, details=details)
    )
    return JSONResponse(status_code=422, content=body.model_dump())


# ---------------------------------------------------------------------------
# Step checkpoints
# ---------------------------------------------------------------------------

@router.post("/wizard/step1")
async def save_basic_info(
    request: Request,
    info: BasicInfo,
    session_id: str = Depends(require_session_id),
) -> JSONResponse:
    try:
        validate_basic_info(info)
    except WizardValidationError as exc:
        return _make_validation_error_response(exc, "Basic information is invalid")

    await set_checkpoint(_storage(request), session_id, "basic_info", info.model_dump(mode="json"))
    return JSONResponse(status_code=200, content={"success": True, "sessionId": session_id})


@router.post("/wizard/step2")
async def save_categories(
    request: Request,
    categories: dict[str, Any] = Body(...),
    session_id: str = Depends(require_session_id),
) -> JSONResponse:
    try:
        validate_categories(categories)
    except WizardValidationError as exc:
        return _make_validation_error_response(exc, "Category counts are invalid")

    await set_checkpoint(_storage(request), session_id, "categories", categories)
    return JSONResponse(status_code=200, content={"success": True, "sessionId": session_id})


@router.post("/wizard/step3")
async def save_images(
    request: Request,
    step: ImageStep,
    session_id: str = Depends(require_session_id),
) -> JSONResponse:
    try:
        validate_images(step.images)
    except WizardValidationError as exc:
        return _make_validation_error_response(exc, "Images are invalid")

    await set_checkpoint(_storage(request), session_id, "image_upload", step.model_dump(mode="json"))
    return JSONResponse(
        status_code=200,
        content={"success": True, "sessionId": session_id, "imageCount": len(step.images)},
    )


# ---------------------------------------------------------------------------
# Finalize
# ---------------------------------------------------------------------------

@router.post("/wizard/complete")
async def complete_wizard(
    request: Request,
    submission: TicketSubmission,
    session_id: str = Depends(require_session_id),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    """
    Validate the aggregated payload, persist the ticket and drop the checkpoint.

    Returns:
        200: {success: true, ticketId}
        422: Standard error envelope listing every violation across all steps.
    """
    if submission.session_id is None:
        submission = submission.model_copy(update={"session_id": session_id})
    try:
        validate_submission(submission)
    except WizardValidationError as exc:
        return _make_validation_error_response(exc, "Ticket validation failed")

    ticket_id = await save_ticket(db, submission)
    await clear_checkpoint(_storage(request), session_id)
    logger.info("Wizard completed session_id=%s ticket_id=%s", session_id, ticket_id)
    return JSONResponse(status_code=200, content={"success": True, "ticketId": ticket_id})


@router.get("/{ticket_id}")
async def read_ticket(
    ticket_id: str,
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    ticket = await get_ticket(db, ticket_id)
    if ticket is None:
        raise HTTPException(status_code=404, detail=f"Ticket '{ticket_id}' not found")
    return JSONResponse(
        status_code=200,
        content={"ticketId": ticket_id, "ticket": ticket.model_dump(mode="json")},
    )
