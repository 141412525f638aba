from __future__ import annotations

from sqlalchemy import func, select

from paritymark.domain.models import AuditEvent
from paritymark.persistence.db import SessionLocal


async def count_events(*, event_type: str | None = None, actor_id: int | None = None) -> int:
    # Count matching audit events to validate event emission deltas.
    async with SessionLocal() as session:
        stmt = select(func.count()).select_from(AuditEvent)
        if event_type:
            stmt = stmt.where(AuditEvent.event_type == event_type)
        if actor_id is not None:
            stmt = stmt.where(AuditEvent.actor_id == actor_id)
        result = await session.execute(stmt)
        return int(result.scalar() or 0)


async def events_since(last_id: int, *, event_type: str | None = None) -> list[AuditEvent]:
    # Events appended after a watermark, in insertion order.
    async with SessionLocal() as session:
        stmt = select(AuditEvent).where(AuditEvent.id > last_id)
        if event_type:
            stmt = stmt.where(AuditEvent.event_type == event_type)
        result = await session.execute(stmt.order_by(AuditEvent.id.asc()))
        return list(result.scalars().all())


async def audit_watermark() -> int:
    async with SessionLocal() as session:
        result = await session.execute(select(func.max(AuditEvent.id)))
        return int(result.scalar() or 0)
