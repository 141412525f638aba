from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from paritymark.domain.models import (
    AssessmentItem,
    AssessmentPaper,
    AssessmentQig,
    AssessmentSeries,
)
from paritymark.persistence.upsert import dialect_insert


async def list_series(session: AsyncSession, deployment_id: int) -> list[AssessmentSeries]:
    result = await session.execute(
        select(AssessmentSeries)
        .where(AssessmentSeries.deployment_id == deployment_id, AssessmentSeries.archived_at.is_(None))
        .order_by(AssessmentSeries.id.asc())
    )
    return list(result.scalars().all())


async def list_papers(session: AsyncSession, series_ids: list[int]) -> list[AssessmentPaper]:
    if not series_ids:
        return []
    result = await session.execute(
        select(AssessmentPaper)
        .where(AssessmentPaper.series_id.in_(series_ids), AssessmentPaper.archived_at.is_(None))
        .order_by(AssessmentPaper.id.asc())
    )
    return list(result.scalars().all())


async def list_qigs(session: AsyncSession, paper_ids: list[int]) -> list[AssessmentQig]:
    if not paper_ids:
        return []
    result = await session.execute(
        select(AssessmentQig)
        .where(AssessmentQig.paper_id.in_(paper_ids), AssessmentQig.archived_at.is_(None))
        .order_by(AssessmentQig.id.asc())
    )
    return list(result.scalars().all())


async def list_items(session: AsyncSession, qig_ids: list[int]) -> list[AssessmentItem]:
    if not qig_ids:
        return []
    result = await session.execute(
        select(AssessmentItem)
        .where(AssessmentItem.qig_id.in_(qig_ids), AssessmentItem.archived_at.is_(None))
        .order_by(AssessmentItem.id.asc())
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def get_or_create_series(
    session: AsyncSession,
    *,
    deployment_id: int,
    code: str,
    name: str,
) -> AssessmentSeries:
    stmt = dialect_insert(session, AssessmentSeries).values(deployment_id=deployment_id, code=code, name=name)
    await session.execute(
        stmt.on_conflict_do_nothing(index_elements=[AssessmentSeries.deployment_id, AssessmentSeries.code])
    )
    result = await session.execute(
        select(AssessmentSeries).where(
            AssessmentSeries.deployment_id == deployment_id,
            AssessmentSeries.code == code,
        )
    )
    return result.scalar_one()


async def get_or_create_paper(session: AsyncSession, *, series_id: int, code: str, name: str) -> AssessmentPaper:
    stmt = dialect_insert(session, AssessmentPaper).values(series_id=series_id, code=code, name=name)
    await session.execute(
        stmt.on_conflict_do_nothing(index_elements=[AssessmentPaper.series_id, AssessmentPaper.code])
    )
    result = await session.execute(
        select(AssessmentPaper).where(AssessmentPaper.series_id == series_id, AssessmentPaper.code == code)
    )
    return result.scalar_one()


async def get_or_create_qig(session: AsyncSession, *, paper_id: int, code: str, name: str) -> AssessmentQig:
    stmt = dialect_insert(session, AssessmentQig).values(paper_id=paper_id, code=code, name=name)
    await session.execute(stmt.on_conflict_do_nothing(index_elements=[AssessmentQig.paper_id, AssessmentQig.code]))
    result = await session.execute(
        select(AssessmentQig).where(AssessmentQig.paper_id == paper_id, AssessmentQig.code == code)
    )
    return result.scalar_one()


async def upsert_item(session: AsyncSession, *, qig_id: int, code: str, max_mark: int) -> None:
    # Re-authoring an item overwrites its max mark in place.
    stmt = dialect_insert(session, AssessmentItem).values(qig_id=qig_id, code=code, max_mark=max_mark)
    await session.execute(
        stmt.on_conflict_do_update(
            index_elements=[AssessmentItem.qig_id, AssessmentItem.code],
            set_={"max_mark": stmt.excluded.max_mark},
        )
    )


async def count_qigs(session: AsyncSession, deployment_id: int) -> int:
    result = await session.execute(
        select(func.count())
        .select_from(AssessmentQig)
        .join(AssessmentPaper, AssessmentPaper.id == AssessmentQig.paper_id)
        .join(AssessmentSeries, AssessmentSeries.id == AssessmentPaper.series_id)
        .where(AssessmentSeries.deployment_id == deployment_id)
    )
    return int(result.scalar_one())
