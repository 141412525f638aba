from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from paritymark.domain.models import AuditEvent


async def list_events(
    session: AsyncSession,
    *,
    event_type: str | None = None,
    outcome: str | None = None,
    actor_id: int | None = None,
    request_id: str | None = None,
    occurred_from: datetime | None = None,
    occurred_to: datetime | None = None,
    offset: int = 0,
    limit: int = 50,
) -> list[AuditEvent]:
    stmt = select(AuditEvent)
    if event_type:
        stmt = stmt.where(AuditEvent.event_type == event_type)
    if outcome:
        stmt = stmt.where(AuditEvent.outcome == outcome)
    if actor_id is not None:
        stmt = stmt.where(AuditEvent.actor_id == actor_id)
    if request_id:
        stmt = stmt.where(AuditEvent.request_id == request_id)
    if occurred_from:
        stmt = stmt.where(AuditEvent.occurred_at >= occurred_from)
    if occurred_to:
        stmt = stmt.where(AuditEvent.occurred_at <= occurred_to)

    # Newest first; id breaks ties between events stamped in the same instant.
    stmt = stmt.order_by(AuditEvent.occurred_at.desc(), AuditEvent.id.desc())
    stmt = stmt.offset(offset).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def latest_event(session: AsyncSession, *, event_type: str) -> AuditEvent | None:
    # "Latest by type" is insertion order, so the id is authoritative.
    result = await session.execute(
        select(AuditEvent)
        .where(AuditEvent.event_type == event_type)
        .order_by(AuditEvent.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def count_events(session: AsyncSession, *, event_type: str | None = None) -> int:
    stmt = select(func.count()).select_from(AuditEvent)
    if event_type:
        stmt = stmt.where(AuditEvent.event_type == event_type)
    result = await session.execute(stmt)
    return int(result.scalar_one())
