from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from paritymark.domain.models import (
    RESPONSE_STATE_LOCKED,
    AssessmentPaper,
    AssessmentQig,
    AssessmentSeries,
    Deployment,
    Response,
)
from paritymark.persistence.upsert import dialect_insert


@dataclass(frozen=True)
class ResponseContext:
    # Where a response sits in the deployment, for audit metadata.
    response_id: int
    qig_id: int
    qig_code: str
    deployment_id: int
    deployment_code: str


async def get_response(session: AsyncSession, response_id: int, *, for_update: bool = False) -> Response | None:
    stmt = select(Response).where(Response.id == response_id)
    if for_update:
        # Concurrent marking writes on one response queue behind this row lock.
        stmt = stmt.with_for_update()
    result = await session.execute(stmt.execution_options(populate_existing=True))
    return result.scalar_one_or_none()


async def get_response_context(session: AsyncSession, response_id: int) -> ResponseContext | None:
    result = await session.execute(
        select(
            Response.id,
            AssessmentQig.id,
            AssessmentQig.code,
            Deployment.id,
            Deployment.code,
        )
        .join(AssessmentQig, AssessmentQig.id == Response.qig_id)
        .join(AssessmentPaper, AssessmentPaper.id == AssessmentQig.paper_id)
        .join(AssessmentSeries, AssessmentSeries.id == AssessmentPaper.series_id)
        .join(Deployment, Deployment.id == AssessmentSeries.deployment_id)
        .where(Response.id == response_id)
    )
    row = result.first()
    if row is None:
        return None
    return ResponseContext(
        response_id=row[0],
        qig_id=row[1],
        qig_code=row[2],
        deployment_id=row[3],
        deployment_code=row[4],
    )


async def claim_unlocked(session: AsyncSession, response_id: int, *, state: str | None = None) -> bool:
    # Conditional write on the response row: matches only while it is not LOCKED.
    # Writers serialise here even where FOR UPDATE is ignored (SQLite).
    result = await session.execute(
        update(Response)
        .where(
            Response.id == response_id,
            or_(Response.state.is_(None), Response.state != RESPONSE_STATE_LOCKED),
        )
        .values(state=state if state is not None else Response.state)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def lock_response(session: AsyncSession, response_id: int) -> bool:
    return await claim_unlocked(session, response_id, state=RESPONSE_STATE_LOCKED)


async def upsert_response(
    session: AsyncSession,
    *,
    qig_id: int,
    candidate_id: str,
    script_url: str | None = None,
    manifest: dict[str, Any] | None = None,
    state: str | None = None,
) -> Response:
    # Re-ingestion refreshes the script pointers but never the marking state.
    stmt = dialect_insert(session, Response).values(
        qig_id=qig_id,
        candidate_id=candidate_id,
        script_url=script_url,
        manifest=manifest,
        state=state,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[Response.qig_id, Response.candidate_id],
        set_={"script_url": stmt.excluded.script_url, "manifest": stmt.excluded.manifest},
    )
    await session.execute(stmt)
    result = await session.execute(
        select(Response)
        .where(Response.qig_id == qig_id, Response.candidate_id == candidate_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()
