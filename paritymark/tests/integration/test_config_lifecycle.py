from __future__ import annotations

import asyncio

from datetime import datetime, timezone

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from paritymark.core.errors import (
    ActiveConfigNotFoundError,
    ConfigVersionNotFoundError,
    DeploymentNotFoundError,
)
from paritymark.domain.models import ConfigVersion, Deployment
from paritymark.persistence.db import SessionLocal
from paritymark.persistence.repos import config as config_repo
from paritymark.services import config_versions
from paritymark.services.audit import internal_meta
from paritymark.tests.utils.audit import audit_watermark, events_since
from paritymark.tests.utils.fixtures import seed_deployment, unique_code


_ACTOR = {"id": 1, "external_id": "admin@pm", "display_name": "Admin"}


async def _statuses(code: str) -> dict[int, str]:
    async with SessionLocal() as session:
        _deployment, versions = await config_versions.list_versions(session, deployment_code=code)
    return {version.version_number: version.status for version in versions}


async def _active_count(code: str) -> int:
    async with SessionLocal() as session:
        result = await session.execute(
            select(func.count())
            .select_from(ConfigVersion)
            .join(Deployment, Deployment.id == ConfigVersion.deployment_id)
            .where(Deployment.code == code, ConfigVersion.status == "ACTIVE")
        )
        return int(result.scalar_one())


async def _draft(code: str) -> ConfigVersion:
    async with SessionLocal() as session:
        _deployment, version = await config_versions.create_draft(
            session,
            deployment_code=code,
            created_by="admin@pm",
            meta=internal_meta(f"/config/{code}/drafts"),
            actor=_ACTOR,
        )
    return version


async def _activate(code: str, version_number: int) -> ConfigVersion:
    async with SessionLocal() as session:
        _deployment, version = await config_versions.activate(
            session,
            deployment_code=code,
            version_number=version_number,
            meta=internal_meta(f"/config/{code}/versions/{version_number}/activate"),
            actor=_ACTOR,
        )
    return version


@pytest.mark.asyncio
async def test_draft_numbers_start_at_one_and_increase() -> None:
    code = await seed_deployment()
    mark = await audit_watermark()
    first = await _draft(code)
    second = await _draft(code)
    assert (first.version_number, second.version_number) == (1, 2)
    assert first.status == "DRAFT"
    assert first.created_by == "admin@pm"

    events = await events_since(mark, event_type="CONFIG_DRAFT_CREATED")
    assert [event.payload["meta"]["version_number"] for event in events] == [1, 2]
    meta = events[0].payload["meta"]
    assert meta["deployment_code"] == code
    assert meta["config_version_id"] == first.id
    assert meta["method"] == "INTERNAL"
    assert events[0].payload["actor"]["external_id"] == "admin@pm"


@pytest.mark.asyncio
async def test_draft_for_unknown_deployment_fails() -> None:
    async with SessionLocal() as session:
        with pytest.raises(DeploymentNotFoundError):
            await config_versions.create_draft(
                session,
                deployment_code=unique_code(),
                created_by=None,
                meta=internal_meta("/config/x/drafts"),
            )


@pytest.mark.asyncio
async def test_draft_for_archived_deployment_fails() -> None:
    code = await seed_deployment()
    async with SessionLocal() as session:
        await config_versions.archive_deployment(session, code=code)
    async with SessionLocal() as session:
        assert await config_versions.deployment_exists(session, code) is True
        with pytest.raises(DeploymentNotFoundError):
            await config_versions.create_draft(
                session,
                deployment_code=code,
                created_by=None,
                meta=internal_meta("/config/x/drafts"),
            )


@pytest.mark.asyncio
async def test_activation_retires_previous_active_version() -> None:
    code = await seed_deployment()
    await _draft(code)
    await _draft(code)
    await _activate(code, 1)
    mark = await audit_watermark()

    activated = await _activate(code, 2)

    assert activated.status == "ACTIVE"
    assert activated.activated_at is not None
    assert await _statuses(code) == {1: "RETIRED", 2: "ACTIVE"}
    assert await _active_count(code) == 1
    events = await events_since(mark, event_type="CONFIG_ACTIVATED")
    assert len(events) == 1
    assert events[0].payload["meta"]["version_number"] == 2
    assert events[0].payload["meta"]["retired_count"] == 1


@pytest.mark.asyncio
async def test_activating_approved_version_retires_active_one() -> None:
    code = await seed_deployment()
    await _draft(code)
    v2 = await _draft(code)
    await _activate(code, 1)
    async with SessionLocal() as session:
        row = await session.get(ConfigVersion, v2.id)
        row.status = "APPROVED"
        await session.commit()

    await _activate(code, 2)
    assert await _statuses(code) == {1: "RETIRED", 2: "ACTIVE"}


@pytest.mark.asyncio
async def test_reactivating_active_version_keeps_single_active() -> None:
    code = await seed_deployment()
    await _draft(code)
    await _activate(code, 1)
    await _activate(code, 1)
    assert await _statuses(code) == {1: "ACTIVE"}


@pytest.mark.asyncio
async def test_activation_of_missing_version_changes_nothing() -> None:
    code = await seed_deployment()
    await _draft(code)
    await _activate(code, 1)
    mark = await audit_watermark()
    with pytest.raises(ConfigVersionNotFoundError):
        await _activate(code, 9)
    with pytest.raises(DeploymentNotFoundError):
        await _activate(unique_code(), 1)
    assert await _statuses(code) == {1: "ACTIVE"}
    assert await events_since(mark) == []


@pytest.mark.asyncio
async def test_failed_activation_rolls_back_retirement(monkeypatch: pytest.MonkeyPatch) -> None:
    code = await seed_deployment()
    await _draft(code)
    await _draft(code)
    await _activate(code, 1)

    async def _boom(*args, **kwargs):
        raise RuntimeError("store went away")

    monkeypatch.setattr(config_repo, "mark_version_active", _boom)
    with pytest.raises(RuntimeError):
        await _activate(code, 2)

    # The retirement of v1 ran before the failure and must not be visible.
    assert await _statuses(code) == {1: "ACTIVE", 2: "DRAFT"}


@pytest.mark.asyncio
async def test_store_rejects_second_active_version() -> None:
    code = await seed_deployment()
    v1 = await _draft(code)
    v2 = await _draft(code)
    async with SessionLocal() as session:
        await config_repo.mark_version_active(session, version_id=v1.id, activated_at=datetime.now(timezone.utc))
        await session.commit()
    async with SessionLocal() as session:
        with pytest.raises(IntegrityError):
            await config_repo.mark_version_active(session, version_id=v2.id, activated_at=datetime.now(timezone.utc))
            await session.commit()
        await session.rollback()
    assert await _active_count(code) == 1


@pytest.mark.asyncio
async def test_artifact_upsert_overwrites_payload() -> None:
    code = await seed_deployment()
    version = await _draft(code)
    async with SessionLocal() as session:
        first = await config_versions.upsert_artifact(
            session,
            config_version_id=version.id,
            artifact_type="mark_scheme",
            payload={"q1": 4, "q2": 6},
        )
        second = await config_versions.upsert_artifact(
            session,
            config_version_id=version.id,
            artifact_type="mark_scheme",
            payload={"q1": 5},
        )
    assert first.id == second.id
    assert second.payload == {"q1": 5}


@pytest.mark.asyncio
async def test_artifact_upsert_for_unknown_version_fails() -> None:
    async with SessionLocal() as session:
        with pytest.raises(ConfigVersionNotFoundError):
            await config_versions.upsert_artifact(
                session,
                config_version_id=987654321,
                artifact_type="mark_scheme",
                payload={},
            )


@pytest.mark.asyncio
async def test_active_config_includes_artifacts() -> None:
    code = await seed_deployment()
    async with SessionLocal() as session:
        with pytest.raises(ActiveConfigNotFoundError):
            await config_versions.get_active_config(session, deployment_code=code)

    version = await _draft(code)
    async with SessionLocal() as session:
        await config_versions.upsert_artifact(
            session,
            config_version_id=version.id,
            artifact_type="branding",
            payload={"colour": "teal"},
        )
    await _activate(code, 1)
    async with SessionLocal() as session:
        active = await config_versions.get_active_config(session, deployment_code=code)
    assert active.config_version.version_number == 1
    assert active.artifacts == {"branding": {"colour": "teal"}}


@pytest.mark.asyncio
async def test_duplicate_version_number_surfaces_as_integrity_error() -> None:
    code = await seed_deployment()
    version = await _draft(code)
    async with SessionLocal() as session:
        with pytest.raises(IntegrityError):
            await config_repo.insert_version(
                session,
                deployment_id=version.deployment_id,
                version_number=version.version_number,
                status="DRAFT",
                created_by=None,
            )
        await session.rollback()


@pytest.mark.asyncio
async def test_concurrent_activations_leave_one_active_version() -> None:
    code = await seed_deployment()
    for _ in range(3):
        await _draft(code)
    mark = await audit_watermark()

    results = await asyncio.gather(
        _activate(code, 1),
        _activate(code, 2),
        _activate(code, 3),
        return_exceptions=True,
    )

    assert [result for result in results if isinstance(result, BaseException)] == []
    assert await _active_count(code) == 1
    statuses = await _statuses(code)
    assert sorted(statuses.values()) == ["ACTIVE", "RETIRED", "RETIRED"]
    activated = [
        event
        for event in await events_since(mark, event_type="CONFIG_ACTIVATED")
        if event.payload["meta"]["deployment_code"] == code
    ]
    assert len(activated) == 3


@pytest.mark.asyncio
async def test_create_deployment_returns_archived_row_for_taken_code() -> None:
    code = await seed_deployment()
    async with SessionLocal() as session:
        archived = await config_versions.archive_deployment(session, code=code)
    async with SessionLocal() as session:
        again = await config_versions.create_deployment(session, code=code, name="Replacement")
    assert again.id == archived.id
    assert again.archived_at is not None
    assert again.name != "Replacement"
