from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from paritymark.apps.api.deps import get_db, require_permission
from paritymark.apps.api.openapi import DEFAULT_ERROR_RESPONSES, LOCKED_RESPONSE
from paritymark.apps.api.response import SuccessEnvelope
from paritymark.core.errors import MarkNotFoundError
from paritymark.domain.models import User
from paritymark.services import marking
from paritymark.services.audit import get_request_meta


router = APIRouter(
    prefix="/marking",
    tags=["marking"],
    responses={**DEFAULT_ERROR_RESPONSES, **LOCKED_RESPONSE},
)


class MarkRequest(BaseModel):
    # Item code -> awarded mark; replaces any earlier payload.
    payload: dict[str, Any]

    model_config = {"extra": "forbid"}


class MarkResponse(BaseModel):
    id: int
    response_id: int
    marker_user_id: int
    state: str
    payload: dict[str, Any]
    created_at: str | None
    updated_at: str | None


@router.post(
    "/responses/{response_id}/draft",
    response_model=SuccessEnvelope[MarkResponse] | MarkResponse,
)
async def save_draft(
    response_id: int,
    request: Request,
    body: MarkRequest,
    caller: User = Depends(require_permission("marking.edit")),
    db: AsyncSession = Depends(get_db),
) -> MarkResponse:
    try:
        mark = await marking.save_draft(
            db,
            response_id=response_id,
            marker_id=caller.id,
            payload=body.payload,
            meta=get_request_meta(request),
        )
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while saving draft mark") from exc
    return MarkResponse(**marking.mark_to_dict(mark))


@router.post(
    "/responses/{response_id}/submit",
    response_model=SuccessEnvelope[MarkResponse] | MarkResponse,
)
async def submit(
    response_id: int,
    request: Request,
    body: MarkRequest,
    caller: User = Depends(require_permission("marking.edit")),
    db: AsyncSession = Depends(get_db),
) -> MarkResponse:
    try:
        mark = await marking.submit(
            db,
            response_id=response_id,
            marker_id=caller.id,
            payload=body.payload,
            meta=get_request_meta(request),
        )
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while submitting mark") from exc
    return MarkResponse(**marking.mark_to_dict(mark))


@router.get(
    "/responses/{response_id}",
    response_model=SuccessEnvelope[MarkResponse] | MarkResponse,
)
async def get_mark(
    response_id: int,
    caller: User = Depends(require_permission("marking.view")),
    db: AsyncSession = Depends(get_db),
) -> MarkResponse:
    try:
        mark = await marking.get_mark(db, response_id=response_id, marker_id=caller.id)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while fetching mark") from exc
    if mark is None:
        raise MarkNotFoundError(
            f"No mark for response {response_id} by this marker",
            response_id=response_id,
        )
    return MarkResponse(**marking.mark_to_dict(mark))
