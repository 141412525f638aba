from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from paritymark.apps.api.deps import get_db, require_caller
from paritymark.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from paritymark.apps.api.response import SuccessEnvelope
from paritymark.domain.models import User
from paritymark.services.identity import profile_for


router = APIRouter(prefix="/identity", tags=["identity"], responses=DEFAULT_ERROR_RESPONSES)


class ReviewerScopeResponse(BaseModel):
    deployment_code: str
    qig_code: str


class RoleResponse(BaseModel):
    key: str
    name: str
    scopes: list[ReviewerScopeResponse]


class ProfileResponse(BaseModel):
    id: int
    external_id: str | None
    display_name: str | None
    created_at: str | None
    roles: list[RoleResponse]
    # Flattened across every active role.
    permissions: list[str]


@router.get("/me", response_model=SuccessEnvelope[ProfileResponse] | ProfileResponse)
async def get_me(
    caller: User = Depends(require_caller),
    db: AsyncSession = Depends(get_db),
) -> ProfileResponse:
    try:
        profile = await profile_for(db, caller)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while loading profile") from exc
    return ProfileResponse.model_validate(profile)
