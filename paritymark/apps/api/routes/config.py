from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from paritymark.apps.api.deps import actor_for, get_db, require_permission
from paritymark.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from paritymark.apps.api.response import SuccessEnvelope
from paritymark.core.errors import DeploymentNotFoundError
from paritymark.domain.models import User
from paritymark.services import config_versions
from paritymark.services.audit import get_request_meta


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/config", tags=["config"], responses=DEFAULT_ERROR_RESPONSES)


class DeploymentResponse(BaseModel):
    id: int
    code: str
    name: str
    created_at: str | None
    archived_at: str | None


class ConfigVersionResponse(BaseModel):
    id: int
    deployment_id: int
    version_number: int
    status: str
    created_at: str | None
    approved_at: str | None
    activated_at: str | None
    created_by: str | None


class ArtifactResponse(BaseModel):
    id: int
    config_version_id: int
    artifact_type: str
    payload: dict[str, Any]
    updated_at: str | None


class DraftCreateRequest(BaseModel):
    # Display name used only if the deployment has to be created.
    name: str | None = None
    artifacts: dict[str, dict[str, Any]] = Field(default_factory=dict)

    model_config = {"extra": "forbid"}


class DraftResponse(BaseModel):
    deployment: DeploymentResponse
    config_version: ConfigVersionResponse
    artifacts: list[ArtifactResponse]


class ActivationResponse(BaseModel):
    deployment: DeploymentResponse
    config_version: ConfigVersionResponse


class ActiveConfigResponse(BaseModel):
    deployment: DeploymentResponse
    config_version: ConfigVersionResponse
    artifacts: dict[str, dict[str, Any]]


class VersionListResponse(BaseModel):
    deployment: DeploymentResponse
    versions: list[ConfigVersionResponse]


def _deployment(deployment) -> DeploymentResponse:
    return DeploymentResponse(**config_versions.deployment_to_dict(deployment))


def _version(version) -> ConfigVersionResponse:
    return ConfigVersionResponse(**config_versions.version_to_dict(version))


def _artifact(artifact) -> ArtifactResponse:
    return ArtifactResponse(**config_versions.artifact_to_dict(artifact))


@router.post(
    "/{deployment_code}/drafts",
    status_code=status.HTTP_201_CREATED,
    response_model=SuccessEnvelope[DraftResponse] | DraftResponse,
)
async def create_draft(
    deployment_code: str,
    request: Request,
    payload: DraftCreateRequest | None = None,
    caller: User = Depends(require_permission("config.edit")),
    db: AsyncSession = Depends(get_db),
) -> DraftResponse:
    body = payload or DraftCreateRequest()
    meta = get_request_meta(request)
    kwargs = {
        "deployment_code": deployment_code,
        "created_by": caller.external_id,
        "meta": meta,
        "actor": actor_for(caller),
        "commit": False,
    }
    try:
        try:
            deployment, version = await config_versions.create_draft(db, **kwargs)
        except DeploymentNotFoundError:
            # Auto-create only brand-new codes; archived deployments stay archived.
            if await config_versions.deployment_exists(db, deployment_code):
                raise
            await config_versions.create_deployment(db, code=deployment_code, name=body.name)
            deployment, version = await config_versions.create_draft(db, **kwargs)
        artifacts = []
        for artifact_type, artifact_payload in body.artifacts.items():
            artifacts.append(
                await config_versions.upsert_artifact(
                    db,
                    config_version_id=version.id,
                    artifact_type=artifact_type,
                    payload=artifact_payload,
                    commit=False,
                )
            )
        # The draft, its audit event and its artifacts land in one commit.
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        # Concurrent drafters collided on the version number.
        logger.warning("config_draft_conflict deployment=%s", deployment_code)
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "Concurrent draft creation, retry"},
        ) from exc
    except SQLAlchemyError as exc:
        await db.rollback()
        raise HTTPException(status_code=500, detail="Database error while creating draft") from exc
    return DraftResponse(
        deployment=_deployment(deployment),
        config_version=_version(version),
        artifacts=[_artifact(artifact) for artifact in artifacts],
    )


@router.put(
    "/{deployment_code}/versions/{version_number}/artifacts/{artifact_type}",
    response_model=SuccessEnvelope[ArtifactResponse] | ArtifactResponse,
)
async def put_artifact(
    deployment_code: str,
    version_number: int,
    artifact_type: str,
    payload: dict[str, Any],
    caller: User = Depends(require_permission("config.edit")),
    db: AsyncSession = Depends(get_db),
) -> ArtifactResponse:
    _deployment_row, version = await config_versions.get_version(
        db,
        deployment_code=deployment_code,
        version_number=version_number,
    )
    try:
        artifact = await config_versions.upsert_artifact(
            db,
            config_version_id=version.id,
            artifact_type=artifact_type,
            payload=payload,
        )
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while saving artifact") from exc
    return _artifact(artifact)


@router.post(
    "/{deployment_code}/versions/{version_number}/activate",
    response_model=SuccessEnvelope[ActivationResponse] | ActivationResponse,
)
async def activate_version(
    deployment_code: str,
    version_number: int,
    request: Request,
    caller: User = Depends(require_permission("config.activate")),
    db: AsyncSession = Depends(get_db),
) -> ActivationResponse:
    try:
        deployment, version = await config_versions.activate(
            db,
            deployment_code=deployment_code,
            version_number=version_number,
            meta=get_request_meta(request),
            actor=actor_for(caller),
        )
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while activating config") from exc
    return ActivationResponse(deployment=_deployment(deployment), config_version=_version(version))


@router.get(
    "/{deployment_code}",
    response_model=SuccessEnvelope[ActiveConfigResponse] | ActiveConfigResponse,
)
async def get_active_config(
    deployment_code: str,
    caller: User = Depends(require_permission("config.view")),
    db: AsyncSession = Depends(get_db),
) -> ActiveConfigResponse:
    try:
        active = await config_versions.get_active_config(db, deployment_code=deployment_code)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while fetching config") from exc
    return ActiveConfigResponse(
        deployment=_deployment(active.deployment),
        config_version=_version(active.config_version),
        artifacts=active.artifacts,
    )


@router.get(
    "/{deployment_code}/versions",
    response_model=SuccessEnvelope[VersionListResponse] | VersionListResponse,
)
async def list_versions(
    deployment_code: str,
    caller: User = Depends(require_permission("config.view")),
    db: AsyncSession = Depends(get_db),
) -> VersionListResponse:
    try:
        deployment, versions = await config_versions.list_versions(db, deployment_code=deployment_code)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while listing versions") from exc
    return VersionListResponse(
        deployment=_deployment(deployment),
        versions=[_version(version) for version in versions],
    )
