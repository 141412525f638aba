from __future__ import annotations

import pytest

from paritymark.core.errors import DeploymentNotFoundError
from paritymark.domain.models import User
from paritymark.persistence.db import SessionLocal
from paritymark.services import assessment
from paritymark.services.audit import internal_meta
from paritymark.services.identity import active_roles_for, add_reviewer_scope
from paritymark.tests.utils.audit import audit_watermark, events_since
from paritymark.tests.utils.fixtures import seed_deployment, seed_structure, unique_code
from paritymark.tests.utils.identity import create_caller


def _qig_codes(tree) -> list[str]:
    return [qig["code"] for series in tree for paper in series["papers"] for qig in paper["qigs"]]


async def _view(code: str, user_id: int):
    async with SessionLocal() as session:
        caller = await session.get(User, user_id)
        return await assessment.view_tree(
            session,
            deployment_code=code,
            caller=caller,
            meta=internal_meta(f"/assessment/{code}/tree"),
        )


@pytest.mark.asyncio
async def test_structure_is_created_in_order() -> None:
    code = await seed_deployment()
    tree = await seed_structure(code, qig_codes=("Q1", "Q2", "Q3"))
    assert [series["code"] for series in tree] == ["S1"]
    assert [paper["code"] for paper in tree[0]["papers"]] == ["P1"]
    assert _qig_codes(tree) == ["Q1", "Q2", "Q3"]
    items = tree[0]["papers"][0]["qigs"][0]["items"]
    assert [(item["code"], item["max_mark"]) for item in items] == [("Q1a", 4), ("Q1b", 6)]


@pytest.mark.asyncio
async def test_reapplying_structure_updates_max_marks_in_place() -> None:
    code = await seed_deployment()
    before = await seed_structure(code)
    mark = await audit_watermark()
    async with SessionLocal() as session:
        after = await assessment.ensure_structure(
            session,
            deployment_code=code,
            structure=[
                {
                    "code": "S1",
                    "papers": [
                        {"code": "P1", "qigs": [{"code": "Q1", "items": [{"code": "Q1a", "max_mark": 8}]}]}
                    ],
                }
            ],
            meta=internal_meta(f"/assessment/{code}/structure"),
        )

    assert _qig_codes(after) == ["Q1", "Q2"]
    first_qig_before = before[0]["papers"][0]["qigs"][0]
    first_qig_after = after[0]["papers"][0]["qigs"][0]
    assert first_qig_after["id"] == first_qig_before["id"]
    assert first_qig_after["items"][0] == {"id": first_qig_before["items"][0]["id"], "code": "Q1a", "max_mark": 8}

    events = await events_since(mark, event_type="ASSESSMENT_STRUCTURE_UPDATED")
    assert len(events) == 1
    meta = events[0].payload["meta"]
    assert (meta["series"], meta["papers"], meta["qigs"], meta["items"]) == (1, 1, 1, 1)


@pytest.mark.asyncio
async def test_unrestricted_caller_sees_full_tree_and_read_is_audited() -> None:
    code = await seed_deployment()
    await seed_structure(code)
    _headers, user_id = await create_caller(roles=("assessment-admin",))
    mark = await audit_watermark()

    deployment, tree, restricted = await _view(code, user_id)

    assert deployment.code == code
    assert restricted is False
    assert _qig_codes(tree) == ["Q1", "Q2"]
    events = await events_since(mark, event_type="ASSESSMENT_TREE_VIEWED")
    assert len(events) == 1
    assert events[0].actor_id == user_id
    assert events[0].payload["meta"]["restricted"] is False
    assert events[0].payload["meta"]["deployment_code"] == code


@pytest.mark.asyncio
async def test_examiner_role_restricts_tree_to_its_qig() -> None:
    code = await seed_deployment()
    await seed_structure(code)
    _headers, user_id = await create_caller(roles=("marker", f"AE_{code}_Q1"))

    _deployment, tree, restricted = await _view(code, user_id)

    assert restricted is True
    assert _qig_codes(tree) == ["Q1"]
    assert [item["code"] for item in tree[0]["papers"][0]["qigs"][0]["items"]] == ["Q1a", "Q1b"]


@pytest.mark.asyncio
async def test_examiner_role_for_other_deployment_does_not_restrict() -> None:
    code = await seed_deployment()
    await seed_structure(code)
    _headers, user_id = await create_caller(roles=(f"AE_{unique_code()}_Q1",))

    _deployment, tree, restricted = await _view(code, user_id)

    assert restricted is False
    assert _qig_codes(tree) == ["Q1", "Q2"]


@pytest.mark.asyncio
async def test_examiner_scope_for_missing_qig_leaves_empty_tree() -> None:
    code = await seed_deployment()
    await seed_structure(code)
    _headers, user_id = await create_caller(roles=(f"AE_{code}_Q9",))

    _deployment, tree, restricted = await _view(code, user_id)

    assert restricted is True
    assert tree == []


@pytest.mark.asyncio
async def test_reviewer_scope_rows_restrict_like_role_keys() -> None:
    code = await seed_deployment()
    await seed_structure(code)
    role_key = f"reviewer-{unique_code()}"
    _headers, user_id = await create_caller(roles=(role_key,))
    async with SessionLocal() as session:
        await add_reviewer_scope(session, role_key=role_key, deployment_code=code, qig_code="Q2")
        await session.commit()

    _deployment, tree, restricted = await _view(code, user_id)

    assert restricted is True
    assert _qig_codes(tree) == ["Q2"]


@pytest.mark.asyncio
async def test_tree_for_unknown_deployment_fails() -> None:
    _headers, user_id = await create_caller(roles=("assessment-admin",))
    with pytest.raises(DeploymentNotFoundError):
        await _view(unique_code(), user_id)


@pytest.mark.asyncio
async def test_role_scopes_load_only_for_the_requested_deployment() -> None:
    code = await seed_deployment()
    other_code = await seed_deployment()
    role_key = f"reviewer-{unique_code()}"
    _headers, user_id = await create_caller(roles=(role_key,))
    async with SessionLocal() as session:
        await add_reviewer_scope(session, role_key=role_key, deployment_code=code, qig_code="Q1")
        await add_reviewer_scope(session, role_key=role_key, deployment_code=other_code, qig_code="Q2")
        await session.commit()

    async with SessionLocal() as session:
        everywhere = await active_roles_for(session, user_id)
        here = await active_roles_for(session, user_id, deployment_code=code)

    assert {scope for role in everywhere for scope in role.scopes} == {(code, "Q1"), (other_code, "Q2")}
    assert [scope for role in here for scope in role.scopes] == [(code, "Q1")]
