from __future__ import annotations

import logging

from fastapi import APIRouter
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from paritymark.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from paritymark.apps.api.response import SuccessEnvelope
from paritymark.core.config import get_settings
from paritymark.persistence.db import get_session, pool_stats


logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"], responses=DEFAULT_ERROR_RESPONSES)


class HealthResponse(BaseModel):
    status: str
    database: str
    pool: dict[str, int | None]


@router.get("/health", response_model=SuccessEnvelope[HealthResponse] | HealthResponse)
async def health() -> HealthResponse:
    # Unauthenticated liveness probe; the DB round-trip is opt-in.
    database = "skipped"
    if get_settings().health_check_db:
        try:
            async with get_session() as session:
                await session.execute(text("SELECT 1"))
            database = "ok"
        except SQLAlchemyError:
            logger.warning("health_db_probe_failed", exc_info=True)
            database = "unavailable"
    status = "ok" if database != "unavailable" else "degraded"
    return HealthResponse(status=status, database=database, pool=pool_stats())
