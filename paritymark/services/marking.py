from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from paritymark.core.errors import ResponseLockedError, ResponseNotFoundError
from paritymark.domain.models import (
    MARK_STATE_DRAFT,
    MARK_STATE_SUBMITTED,
    RESPONSE_STATE_LOCKED,
    Response,
    ResponseMark,
)
from paritymark.persistence.repos import identity as identity_repo
from paritymark.persistence.repos import marks as marks_repo
from paritymark.persistence.repos import responses as responses_repo
from paritymark.services.audit import (
    MARKING_DRAFT_SAVED,
    MARKING_LOCKED,
    MARKING_SUBMITTED,
    caller_ref,
    internal_meta,
    record_event,
)


logger = logging.getLogger(__name__)

OPERATION_DRAFT_SAVED = "DRAFT_SAVED"
OPERATION_SUBMITTED = "SUBMITTED"
OPERATION_LOCKED = "LOCKED"


def is_locked(response: Response) -> bool:
    return response.state == RESPONSE_STATE_LOCKED


async def _locked_check(session: AsyncSession, response_id: int) -> Response:
    # Row lock taken here holds until the write transaction ends.
    response = await responses_repo.get_response(session, response_id, for_update=True)
    if response is None:
        raise ResponseNotFoundError(f"Response {response_id} not found", response_id=response_id)
    if is_locked(response):
        raise ResponseLockedError(f"Response {response_id} is locked", response_id=response_id)
    return response


async def _claim(session: AsyncSession, response_id: int, *, lock: bool = False) -> None:
    # A concurrent submit that committed first leaves nothing to claim.
    if lock:
        claimed = await responses_repo.lock_response(session, response_id)
    else:
        claimed = await responses_repo.claim_unlocked(session, response_id)
    if not claimed:
        raise ResponseLockedError(f"Response {response_id} is locked", response_id=response_id)


async def _marking_meta(
    session: AsyncSession,
    response_id: int,
    operation: str,
    meta: dict[str, Any] | None,
) -> dict[str, Any]:
    base = dict(meta) if meta is not None else internal_meta(f"/marking/responses/{response_id}")
    context = await responses_repo.get_response_context(session, response_id)
    base["response_id"] = response_id
    base["operation"] = operation
    if context is not None:
        base.update(
            {
                "deployment_id": context.deployment_id,
                "deployment_code": context.deployment_code,
                "qig_id": context.qig_id,
                "qig_code": context.qig_code,
            }
        )
    return base


async def _marker_actor(session: AsyncSession, marker_id: int) -> dict[str, Any]:
    marker = await identity_repo.get_user(session, marker_id)
    return caller_ref(marker) or {"id": marker_id, "external_id": None, "display_name": None}


async def save_draft(
    session: AsyncSession,
    *,
    response_id: int,
    marker_id: int,
    payload: dict[str, Any],
    meta: dict[str, Any] | None = None,
) -> ResponseMark:
    """Overwrite the marker's mark for a response with a DRAFT payload.

    Fails with ``LOCKED`` and touches nothing once the response is locked.
    """
    try:
        await _locked_check(session, response_id)
        await _claim(session, response_id)
        mark = await marks_repo.upsert_mark(
            session,
            response_id=response_id,
            marker_user_id=marker_id,
            state=MARK_STATE_DRAFT,
            payload=payload,
        )
        await record_event(
            session,
            event_type=MARKING_DRAFT_SAVED,
            meta=await _marking_meta(session, response_id, OPERATION_DRAFT_SAVED, meta),
            actor=await _marker_actor(session, marker_id),
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    logger.info("marking_draft_saved response_id=%s marker_id=%s", response_id, marker_id)
    return mark


async def submit(
    session: AsyncSession,
    *,
    response_id: int,
    marker_id: int,
    payload: dict[str, Any],
    meta: dict[str, Any] | None = None,
) -> ResponseMark:
    """Submit the marker's mark and lock the owning response.

    Submission and locking are audited as two events, in that order.
    """
    try:
        await _locked_check(session, response_id)
        await _claim(session, response_id, lock=True)
        mark = await marks_repo.upsert_mark(
            session,
            response_id=response_id,
            marker_user_id=marker_id,
            state=MARK_STATE_SUBMITTED,
            payload=payload,
        )
        actor = await _marker_actor(session, marker_id)
        await record_event(
            session,
            event_type=MARKING_SUBMITTED,
            meta=await _marking_meta(session, response_id, OPERATION_SUBMITTED, meta),
            actor=actor,
        )
        await record_event(
            session,
            event_type=MARKING_LOCKED,
            meta=await _marking_meta(session, response_id, OPERATION_LOCKED, meta),
            actor=actor,
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    logger.info("marking_submitted response_id=%s marker_id=%s locked=true", response_id, marker_id)
    return mark


async def get_mark(session: AsyncSession, *, response_id: int, marker_id: int) -> ResponseMark | None:
    response = await responses_repo.get_response(session, response_id)
    if response is None:
        raise ResponseNotFoundError(f"Response {response_id} not found", response_id=response_id)
    return await marks_repo.get_mark(session, response_id=response_id, marker_user_id=marker_id)


def mark_to_dict(mark: ResponseMark) -> dict[str, Any]:
    return {
        "id": mark.id,
        "response_id": mark.response_id,
        "marker_user_id": mark.marker_user_id,
        "state": mark.state,
        "payload": mark.payload,
        "created_at": mark.created_at.isoformat() if mark.created_at else None,
        "updated_at": mark.updated_at.isoformat() if mark.updated_at else None,
    }
