from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from relayhub.apps.api.deps import get_db, get_pipeline
from relayhub.core.config import get_settings
from relayhub.services.pipeline import MessagePipeline
from relayhub.services.telemetry import (
    availability,
    counters_snapshot,
    external_latency_by_integration,
)

router = APIRouter(prefix="/ops", tags=["ops"])

_WINDOW_S = 300


async def _check_db_health(db: AsyncSession) -> bool:
    # Keep the DB check lightweight to avoid introducing new load.
    try:
        await db.execute(select(1))
        return True
    except SQLAlchemyError:
        return False


@router.get("/metrics")
async def ops_metrics(
    db: AsyncSession = Depends(get_db),
    pipeline: MessagePipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    # Dropped and failed events surface here instead of only in log text.
    if not get_settings().ops_metrics_enabled:
        raise HTTPException(status_code=404, detail="Not Found")
    return {
        "db_ok": await _check_db_health(db),
        "inflight_events": pipeline.inflight,
        "availability_5m": availability(_WINDOW_S),
        "external_calls_5m": external_latency_by_integration(_WINDOW_S),
        "counters": counters_snapshot(),
    }
