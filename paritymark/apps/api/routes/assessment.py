from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from paritymark.apps.api.deps import actor_for, get_db, require_permission
from paritymark.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from paritymark.apps.api.response import SuccessEnvelope
from paritymark.domain.models import User
from paritymark.services import assessment
from paritymark.services.audit import get_request_meta


router = APIRouter(prefix="/assessment", tags=["assessment"], responses=DEFAULT_ERROR_RESPONSES)


class ItemSchema(BaseModel):
    id: int | None = None
    code: str
    max_mark: int = Field(ge=0)


class QigSchema(BaseModel):
    id: int | None = None
    code: str
    name: str | None = None
    items: list[ItemSchema] = Field(default_factory=list)


class PaperSchema(BaseModel):
    id: int | None = None
    code: str
    name: str | None = None
    qigs: list[QigSchema] = Field(default_factory=list)


class SeriesSchema(BaseModel):
    id: int | None = None
    code: str
    name: str | None = None
    papers: list[PaperSchema] = Field(default_factory=list)


class StructureRequest(BaseModel):
    series: list[SeriesSchema]

    model_config = {"extra": "forbid"}


class TreeResponse(BaseModel):
    deployment_id: int
    deployment_code: str
    # True when the caller's reviewer scopes pruned the tree.
    restricted: bool
    series: list[SeriesSchema]


@router.get(
    "/{deployment_code}/tree",
    response_model=SuccessEnvelope[TreeResponse] | TreeResponse,
)
async def get_tree(
    deployment_code: str,
    request: Request,
    caller: User = Depends(require_permission("assessment.view")),
    db: AsyncSession = Depends(get_db),
) -> TreeResponse:
    try:
        deployment, tree, restricted = await assessment.view_tree(
            db,
            deployment_code=deployment_code,
            caller=caller,
            meta=get_request_meta(request),
        )
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while reading assessment tree") from exc
    return TreeResponse(
        deployment_id=deployment.id,
        deployment_code=deployment.code,
        restricted=restricted,
        series=[SeriesSchema.model_validate(node) for node in tree],
    )


@router.post(
    "/{deployment_code}/structure",
    response_model=SuccessEnvelope[list[SeriesSchema]] | list[SeriesSchema],
)
async def put_structure(
    deployment_code: str,
    request: Request,
    payload: StructureRequest,
    caller: User = Depends(require_permission("assessment.manage")),
    db: AsyncSession = Depends(get_db),
) -> list[SeriesSchema]:
    try:
        tree = await assessment.ensure_structure(
            db,
            deployment_code=deployment_code,
            structure=[series.model_dump() for series in payload.series],
            meta=get_request_meta(request),
            actor=actor_for(caller),
        )
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while updating assessment structure") from exc
    return [SeriesSchema.model_validate(node) for node in tree]
