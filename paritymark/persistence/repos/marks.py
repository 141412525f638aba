from __future__ import annotations

from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from paritymark.domain.models import ResponseMark
from paritymark.persistence.upsert import dialect_insert


async def get_mark(session: AsyncSession, *, response_id: int, marker_user_id: int) -> ResponseMark | None:
    result = await session.execute(
        select(ResponseMark)
        .where(ResponseMark.response_id == response_id, ResponseMark.marker_user_id == marker_user_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def upsert_mark(
    session: AsyncSession,
    *,
    response_id: int,
    marker_user_id: int,
    state: str,
    payload: dict[str, Any],
) -> ResponseMark:
    # Payload is replaced wholesale on every save.
    stmt = dialect_insert(session, ResponseMark).values(
        response_id=response_id,
        marker_user_id=marker_user_id,
        state=state,
        payload=payload,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[ResponseMark.response_id, ResponseMark.marker_user_id],
        set_={
            "state": stmt.excluded.state,
            "payload": stmt.excluded.payload,
            "updated_at": func.now(),
        },
    )
    await session.execute(stmt)
    result = await session.execute(
        select(ResponseMark)
        .where(ResponseMark.response_id == response_id, ResponseMark.marker_user_id == marker_user_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()
