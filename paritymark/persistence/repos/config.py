from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from paritymark.domain.models import (
    CONFIG_STATUS_ACTIVE,
    CONFIG_STATUS_RETIRED,
    ConfigArtifact,
    ConfigVersion,
    Deployment,
)
from paritymark.persistence.upsert import dialect_insert


async def get_deployment_by_code(
    session: AsyncSession,
    code: str,
    *,
    include_archived: bool = False,
    for_update: bool = False,
) -> Deployment | None:
    stmt = select(Deployment).where(Deployment.code == code)
    if not include_archived:
        stmt = stmt.where(Deployment.archived_at.is_(None))
    if for_update:
        # Serialize activations per deployment; ignored by SQLite.
        stmt = stmt.with_for_update()
    result = await session.execute(stmt.execution_options(populate_existing=True))
    return result.scalar_one_or_none()


async def insert_deployment(session: AsyncSession, *, code: str, name: str) -> Deployment:
    deployment = Deployment(code=code, name=name)
    session.add(deployment)
    await session.flush()
    return deployment


async def archive_deployment(session: AsyncSession, deployment: Deployment, archived_at: datetime) -> None:
    deployment.archived_at = archived_at
    await session.flush()


async def get_version(
    session: AsyncSession,
    *,
    deployment_id: int,
    version_number: int,
) -> ConfigVersion | None:
    result = await session.execute(
        select(ConfigVersion)
        .where(
            ConfigVersion.deployment_id == deployment_id,
            ConfigVersion.version_number == version_number,
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_version_by_id(session: AsyncSession, version_id: int) -> ConfigVersion | None:
    result = await session.execute(
        select(ConfigVersion).where(ConfigVersion.id == version_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def next_version_number(session: AsyncSession, deployment_id: int) -> int:
    result = await session.execute(
        select(func.max(ConfigVersion.version_number)).where(ConfigVersion.deployment_id == deployment_id)
    )
    current = result.scalar_one_or_none()
    return int(current or 0) + 1


async def insert_version(
    session: AsyncSession,
    *,
    deployment_id: int,
    version_number: int,
    status: str,
    created_by: str | None,
) -> ConfigVersion:
    version = ConfigVersion(
        deployment_id=deployment_id,
        version_number=version_number,
        status=status,
        created_by=created_by,
    )
    session.add(version)
    # The (deployment_id, version_number) constraint surfaces drafting races here.
    await session.flush()
    return version


async def retire_active_versions(session: AsyncSession, *, deployment_id: int, keep_version_id: int) -> int:
    # Retire before activating so the one-ACTIVE index never sees two rows.
    result = await session.execute(
        update(ConfigVersion)
        .where(
            ConfigVersion.deployment_id == deployment_id,
            ConfigVersion.status == CONFIG_STATUS_ACTIVE,
            ConfigVersion.id != keep_version_id,
        )
        .values(status=CONFIG_STATUS_RETIRED)
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount or 0)


async def mark_version_active(session: AsyncSession, *, version_id: int, activated_at: datetime) -> None:
    await session.execute(
        update(ConfigVersion)
        .where(ConfigVersion.id == version_id)
        .values(status=CONFIG_STATUS_ACTIVE, activated_at=activated_at)
        .execution_options(synchronize_session=False)
    )


async def get_active_version(session: AsyncSession, deployment_id: int) -> ConfigVersion | None:
    result = await session.execute(
        select(ConfigVersion).where(
            ConfigVersion.deployment_id == deployment_id,
            ConfigVersion.status == CONFIG_STATUS_ACTIVE,
        ).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def list_versions(session: AsyncSession, deployment_id: int) -> list[ConfigVersion]:
    result = await session.execute(
        select(ConfigVersion)
        .where(ConfigVersion.deployment_id == deployment_id)
        .order_by(ConfigVersion.version_number.desc())
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def list_artifacts(session: AsyncSession, config_version_id: int) -> list[ConfigArtifact]:
    result = await session.execute(
        select(ConfigArtifact)
        .where(ConfigArtifact.config_version_id == config_version_id)
        .order_by(ConfigArtifact.artifact_type.asc())
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def upsert_artifact(
    session: AsyncSession,
    *,
    config_version_id: int,
    artifact_type: str,
    payload: dict[str, Any],
) -> ConfigArtifact:
    # Full overwrite keyed by (version, type); no merge with the prior payload.
    stmt = dialect_insert(session, ConfigArtifact).values(
        config_version_id=config_version_id,
        artifact_type=artifact_type,
        payload=payload,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[ConfigArtifact.config_version_id, ConfigArtifact.artifact_type],
        set_={"payload": stmt.excluded.payload, "updated_at": func.now()},
    )
    await session.execute(stmt)
    result = await session.execute(
        select(ConfigArtifact)
        .where(
            ConfigArtifact.config_version_id == config_version_id,
            ConfigArtifact.artifact_type == artifact_type,
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()
