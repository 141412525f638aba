from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from sqlalchemy.ext.asyncio import AsyncSession

from paritymark.core.errors import DeploymentNotFoundError
from paritymark.domain.models import Deployment, User
from paritymark.domain.tree import AssessmentTree, ItemNode, PaperNode, QigNode, SeriesNode
from paritymark.persistence.repos import assessment as assessment_repo
from paritymark.persistence.repos import config as config_repo
from paritymark.services.audit import (
    ASSESSMENT_STRUCTURE_UPDATED,
    ASSESSMENT_TREE_VIEWED,
    caller_ref,
    record_event,
)
from paritymark.services.authz.scoping import filter_tree, restricted_qig_codes
from paritymark.services.identity import active_roles_for


logger = logging.getLogger(__name__)


async def _require_deployment(session: AsyncSession, code: str) -> Deployment:
    deployment = await config_repo.get_deployment_by_code(session, code)
    if deployment is None:
        raise DeploymentNotFoundError(f"Deployment {code} not found", deployment_code=code)
    return deployment


async def tree_for(session: AsyncSession, deployment_id: int) -> AssessmentTree:
    # Every level is ordered by id so repeated reads are stable.
    series_rows = await assessment_repo.list_series(session, deployment_id)
    paper_rows = await assessment_repo.list_papers(session, [row.id for row in series_rows])
    qig_rows = await assessment_repo.list_qigs(session, [row.id for row in paper_rows])
    item_rows = await assessment_repo.list_items(session, [row.id for row in qig_rows])

    items_by_qig: dict[int, list[ItemNode]] = {}
    for item in item_rows:
        items_by_qig.setdefault(item.qig_id, []).append(
            {"id": item.id, "code": item.code, "max_mark": item.max_mark}
        )
    qigs_by_paper: dict[int, list[QigNode]] = {}
    for qig in qig_rows:
        qigs_by_paper.setdefault(qig.paper_id, []).append(
            {"id": qig.id, "code": qig.code, "name": qig.name, "items": items_by_qig.get(qig.id, [])}
        )
    papers_by_series: dict[int, list[PaperNode]] = {}
    for paper in paper_rows:
        papers_by_series.setdefault(paper.series_id, []).append(
            {"id": paper.id, "code": paper.code, "name": paper.name, "qigs": qigs_by_paper.get(paper.id, [])}
        )
    tree: AssessmentTree = []
    for series in series_rows:
        node: SeriesNode = {
            "id": series.id,
            "code": series.code,
            "name": series.name,
            "papers": papers_by_series.get(series.id, []),
        }
        tree.append(node)
    return tree


async def view_tree(
    session: AsyncSession,
    *,
    deployment_code: str,
    caller: User,
    meta: dict[str, Any],
) -> tuple[Deployment, AssessmentTree, bool]:
    """Return the deployment's tree as the caller may see it, and audit the read."""
    deployment = await _require_deployment(session, deployment_code)
    roles = await active_roles_for(session, caller.id, deployment_code=deployment.code)
    restricted = bool(restricted_qig_codes(roles, deployment.code))
    tree = filter_tree(await tree_for(session, deployment.id), roles, deployment.code)
    await record_event(
        session,
        event_type=ASSESSMENT_TREE_VIEWED,
        meta={
            **meta,
            "deployment_id": deployment.id,
            "deployment_code": deployment.code,
            "restricted": restricted,
        },
        actor=caller_ref(caller),
        commit=True,
    )
    return deployment, tree, restricted


async def ensure_structure(
    session: AsyncSession,
    *,
    deployment_code: str,
    structure: Iterable[Mapping[str, Any]],
    meta: dict[str, Any],
    actor: dict[str, Any] | None = None,
) -> AssessmentTree:
    # Get-or-create each node by code; item max marks are overwritten.
    deployment = await _require_deployment(session, deployment_code)
    counts = {"series": 0, "papers": 0, "qigs": 0, "items": 0}
    try:
        for series_spec in structure:
            series = await assessment_repo.get_or_create_series(
                session,
                deployment_id=deployment.id,
                code=series_spec["code"],
                name=series_spec.get("name") or series_spec["code"],
            )
            counts["series"] += 1
            for paper_spec in series_spec.get("papers", []):
                paper = await assessment_repo.get_or_create_paper(
                    session,
                    series_id=series.id,
                    code=paper_spec["code"],
                    name=paper_spec.get("name") or paper_spec["code"],
                )
                counts["papers"] += 1
                for qig_spec in paper_spec.get("qigs", []):
                    qig = await assessment_repo.get_or_create_qig(
                        session,
                        paper_id=paper.id,
                        code=qig_spec["code"],
                        name=qig_spec.get("name") or qig_spec["code"],
                    )
                    counts["qigs"] += 1
                    for item_spec in qig_spec.get("items", []):
                        await assessment_repo.upsert_item(
                            session,
                            qig_id=qig.id,
                            code=item_spec["code"],
                            max_mark=int(item_spec["max_mark"]),
                        )
                        counts["items"] += 1
        await record_event(
            session,
            event_type=ASSESSMENT_STRUCTURE_UPDATED,
            meta={**meta, "deployment_id": deployment.id, "deployment_code": deployment.code, **counts},
            actor=actor,
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    logger.info("assessment_structure_updated deployment=%s qigs=%s", deployment.code, counts["qigs"])
    return await tree_for(session, deployment.id)
