from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from paritymark.apps.api.deps import get_db, require_permission
from paritymark.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from paritymark.apps.api.response import SuccessEnvelope
from paritymark.core.config import get_settings
from paritymark.domain.models import User
from paritymark.persistence.repos import audit as audit_repo
from paritymark.services.audit import AUDIT_EVENT_TYPES, event_to_dict


router = APIRouter(prefix="/audit", tags=["audit"], responses=DEFAULT_ERROR_RESPONSES)


class AuditEventResponse(BaseModel):
    id: int
    occurred_at: str | None
    event_type: str
    outcome: str
    actor_id: int | None
    request_id: str | None
    payload: dict[str, Any]


class AuditEventsPage(BaseModel):
    items: list[AuditEventResponse]
    next_offset: int | None


def _check_event_type(event_type: str | None) -> None:
    if event_type is not None and event_type not in AUDIT_EVENT_TYPES:
        raise HTTPException(
            status_code=422,
            detail={"code": "unknown_audit_event_type", "message": f"Unknown event type {event_type}"},
        )


@router.get("/events", response_model=SuccessEnvelope[AuditEventsPage] | AuditEventsPage)
async def list_audit_events(
    event_type: str | None = None,
    outcome: str | None = None,
    actor_id: int | None = None,
    request_id: str | None = None,
    occurred_from: datetime | None = Query(default=None, alias="from"),
    occurred_to: datetime | None = Query(default=None, alias="to"),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1),
    caller: User = Depends(require_permission("audit.view")),
    db: AsyncSession = Depends(get_db),
) -> AuditEventsPage:
    _check_event_type(event_type)
    limit = min(limit, get_settings().audit_list_max_limit)
    try:
        events = await audit_repo.list_events(
            db,
            event_type=event_type,
            outcome=outcome,
            actor_id=actor_id,
            request_id=request_id,
            occurred_from=occurred_from,
            occurred_to=occurred_to,
            offset=offset,
            limit=limit + 1,
        )
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while fetching audit events") from exc

    next_offset = None
    if len(events) > limit:
        events = events[:limit]
        next_offset = offset + limit

    return AuditEventsPage(
        items=[AuditEventResponse(**event_to_dict(event)) for event in events],
        next_offset=next_offset,
    )


@router.get("/events/latest", response_model=SuccessEnvelope[AuditEventResponse] | AuditEventResponse)
async def latest_audit_event(
    event_type: str = Query(...),
    caller: User = Depends(require_permission("audit.view")),
    db: AsyncSession = Depends(get_db),
) -> AuditEventResponse:
    _check_event_type(event_type)
    try:
        event = await audit_repo.latest_event(db, event_type=event_type)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while fetching audit event") from exc
    if event is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "audit_event_not_found", "message": f"No {event_type} events recorded"},
        )
    return AuditEventResponse(**event_to_dict(event))
