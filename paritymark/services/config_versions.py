from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from paritymark.core.errors import (
    ActiveConfigNotFoundError,
    ConfigVersionNotFoundError,
    DeploymentNotFoundError,
)
from paritymark.domain.models import (
    CONFIG_STATUS_DRAFT,
    ConfigArtifact,
    ConfigVersion,
    Deployment,
)
from paritymark.persistence.repos import config as config_repo
from paritymark.services.audit import CONFIG_ACTIVATED, CONFIG_DRAFT_CREATED, record_event


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActiveConfig:
    deployment: Deployment
    config_version: ConfigVersion
    artifacts: dict[str, dict[str, Any]]


def _version_meta(deployment: Deployment, version: ConfigVersion) -> dict[str, Any]:
    return {
        "deployment_id": deployment.id,
        "deployment_code": deployment.code,
        "config_version_id": version.id,
        "version_number": version.version_number,
    }


async def _require_deployment(session: AsyncSession, code: str, *, for_update: bool = False) -> Deployment:
    deployment = await config_repo.get_deployment_by_code(session, code, for_update=for_update)
    if deployment is None:
        raise DeploymentNotFoundError(f"Deployment {code} not found", deployment_code=code)
    return deployment


async def create_deployment(session: AsyncSession, *, code: str, name: str | None = None) -> Deployment:
    # Returns the existing row, archived or not, when the code is already taken.
    existing = await config_repo.get_deployment_by_code(session, code, include_archived=True)
    if existing is not None:
        return existing
    deployment = await config_repo.insert_deployment(session, code=code, name=name or code)
    await session.commit()
    logger.info("deployment_created deployment_id=%s code=%s", deployment.id, code)
    return deployment


async def archive_deployment(session: AsyncSession, *, code: str) -> Deployment:
    deployment = await _require_deployment(session, code)
    await config_repo.archive_deployment(session, deployment, datetime.now(timezone.utc))
    await session.commit()
    logger.info("deployment_archived deployment_id=%s code=%s", deployment.id, code)
    return deployment


async def deployment_exists(session: AsyncSession, code: str) -> bool:
    # Archived rows count: their codes are never reused.
    deployment = await config_repo.get_deployment_by_code(session, code, include_archived=True)
    return deployment is not None


async def create_draft(
    session: AsyncSession,
    *,
    deployment_code: str,
    created_by: str | None,
    meta: dict[str, Any],
    actor: dict[str, Any] | None = None,
    commit: bool = True,
) -> tuple[Deployment, ConfigVersion]:
    """Open the next DRAFT version for a live deployment.

    Concurrent drafters race on (deployment, version_number); the loser gets
    an ``IntegrityError`` from the store rather than a duplicate number.
    With ``commit=False`` the draft and its audit event are only flushed so
    the caller can commit them together with the draft's artifacts.
    """
    deployment = await _require_deployment(session, deployment_code)
    version_number = await config_repo.next_version_number(session, deployment.id)
    try:
        version = await config_repo.insert_version(
            session,
            deployment_id=deployment.id,
            version_number=version_number,
            status=CONFIG_STATUS_DRAFT,
            created_by=created_by,
        )
        await record_event(
            session,
            event_type=CONFIG_DRAFT_CREATED,
            meta={**meta, **_version_meta(deployment, version)},
            actor=actor,
        )
        if commit:
            await session.commit()
    except SQLAlchemyError:
        await session.rollback()
        raise
    logger.info(
        "config_draft_created deployment=%s version_number=%s",
        deployment.code,
        version.version_number,
    )
    return deployment, version


async def upsert_artifact(
    session: AsyncSession,
    *,
    config_version_id: int,
    artifact_type: str,
    payload: dict[str, Any],
    commit: bool = True,
) -> ConfigArtifact:
    # No status precondition: artifacts may be attached at any lifecycle stage.
    version = await config_repo.get_version_by_id(session, config_version_id)
    if version is None:
        raise ConfigVersionNotFoundError(
            f"Config version {config_version_id} not found",
            config_version_id=config_version_id,
        )
    try:
        artifact = await config_repo.upsert_artifact(
            session,
            config_version_id=config_version_id,
            artifact_type=artifact_type,
            payload=payload,
        )
        if commit:
            await session.commit()
    except SQLAlchemyError:
        await session.rollback()
        raise
    return artifact


async def get_version(session: AsyncSession, *, deployment_code: str, version_number: int) -> tuple[Deployment, ConfigVersion]:
    deployment = await _require_deployment(session, deployment_code)
    version = await config_repo.get_version(session, deployment_id=deployment.id, version_number=version_number)
    if version is None:
        raise ConfigVersionNotFoundError(
            f"Config version {version_number} not found for {deployment_code}",
            deployment_code=deployment_code,
            version_number=version_number,
        )
    return deployment, version


async def activate(
    session: AsyncSession,
    *,
    deployment_code: str,
    version_number: int,
    meta: dict[str, Any],
    actor: dict[str, Any] | None = None,
) -> tuple[Deployment, ConfigVersion]:
    """Make one version the deployment's single ACTIVE version.

    Runs as one transaction: lock the deployment row, retire every other
    ACTIVE version, activate the target, re-read it and append the audit
    event. Any failure rolls the whole sequence back.
    """
    try:
        deployment = await _require_deployment(session, deployment_code, for_update=True)
        target = await config_repo.get_version(
            session,
            deployment_id=deployment.id,
            version_number=version_number,
        )
        if target is None:
            raise ConfigVersionNotFoundError(
                f"Config version {version_number} not found for {deployment_code}",
                deployment_code=deployment_code,
                version_number=version_number,
            )
        retired = await config_repo.retire_active_versions(
            session,
            deployment_id=deployment.id,
            keep_version_id=target.id,
        )
        await config_repo.mark_version_active(
            session,
            version_id=target.id,
            activated_at=datetime.now(timezone.utc),
        )
        activated = await config_repo.get_version_by_id(session, target.id)
        if activated is None:
            raise ConfigVersionNotFoundError(
                f"Config version {version_number} not found for {deployment_code}",
                deployment_code=deployment_code,
                version_number=version_number,
            )
        await record_event(
            session,
            event_type=CONFIG_ACTIVATED,
            meta={**meta, **_version_meta(deployment, activated), "retired_count": retired},
            actor=actor,
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    logger.info(
        "config_activated deployment=%s version_number=%s retired=%s",
        deployment.code,
        activated.version_number,
        retired,
    )
    return deployment, activated


async def get_active_config(session: AsyncSession, *, deployment_code: str) -> ActiveConfig:
    deployment = await _require_deployment(session, deployment_code)
    version = await config_repo.get_active_version(session, deployment.id)
    if version is None:
        raise ActiveConfigNotFoundError(
            f"No active config for {deployment_code}",
            deployment_code=deployment_code,
        )
    artifacts = await config_repo.list_artifacts(session, version.id)
    return ActiveConfig(
        deployment=deployment,
        config_version=version,
        artifacts={artifact.artifact_type: artifact.payload for artifact in artifacts},
    )


async def list_versions(session: AsyncSession, *, deployment_code: str) -> tuple[Deployment, list[ConfigVersion]]:
    deployment = await _require_deployment(session, deployment_code)
    versions = await config_repo.list_versions(session, deployment.id)
    return deployment, versions


def version_to_dict(version: ConfigVersion) -> dict[str, Any]:
    return {
        "id": version.id,
        "deployment_id": version.deployment_id,
        "version_number": version.version_number,
        "status": version.status,
        "created_at": version.created_at.isoformat() if version.created_at else None,
        "approved_at": version.approved_at.isoformat() if version.approved_at else None,
        "activated_at": version.activated_at.isoformat() if version.activated_at else None,
        "created_by": version.created_by,
    }


def deployment_to_dict(deployment: Deployment) -> dict[str, Any]:
    return {
        "id": deployment.id,
        "code": deployment.code,
        "name": deployment.name,
        "created_at": deployment.created_at.isoformat() if deployment.created_at else None,
        "archived_at": deployment.archived_at.isoformat() if deployment.archived_at else None,
    }


def artifact_to_dict(artifact: ConfigArtifact) -> dict[str, Any]:
    return {
        "id": artifact.id,
        "config_version_id": artifact.config_version_id,
        "artifact_type": artifact.artifact_type,
        "payload": artifact.payload,
        "updated_at": artifact.updated_at.isoformat() if artifact.updated_at else None,
    }
