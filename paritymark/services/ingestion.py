from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from paritymark.domain.models import RESPONSE_STATE_INGESTED, Response
from paritymark.persistence.repos import responses as responses_repo


logger = logging.getLogger(__name__)


async def upsert_response(
    session: AsyncSession,
    *,
    qig_id: int,
    candidate_id: str,
    script_url: str | None = None,
    manifest: dict[str, Any] | None = None,
) -> Response:
    # Idempotent per (qig, candidate); marking state survives re-ingestion.
    try:
        response = await responses_repo.upsert_response(
            session,
            qig_id=qig_id,
            candidate_id=candidate_id,
            script_url=script_url,
            manifest=manifest,
            state=RESPONSE_STATE_INGESTED,
        )
        await session.commit()
    except SQLAlchemyError:
        await session.rollback()
        raise
    logger.info("response_ingested response_id=%s qig_id=%s", response.id, qig_id)
    return response
