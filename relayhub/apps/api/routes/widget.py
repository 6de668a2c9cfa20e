from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, Header, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from relayhub.apps.api.deps import get_db, get_pipeline
from relayhub.apps.api.errors import error_body
from relayhub.domain.events import CHANNEL_WIDGET, InboundEvent
from relayhub.domain.state import (
    REASON_COMPLETION_FAILED,
    REASON_DISABLED,
    REASON_MISSING_PROVIDER_KEY,
    REASON_NOT_FOUND,
    REASON_ORIGIN_REJECTED,
    PipelineRun,
)
from relayhub.services.credentials import resolve_model
from relayhub.services.pipeline import MessagePipeline
from relayhub.services.tenant_resolver import resolve_by_widget_key

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/widget", tags=["widget"])


class WidgetConfigResponse(BaseModel):
    ok: bool
    tenantName: str
    model: str


class WidgetMessageRequest(BaseModel):
    # Loose types so missing or odd fields become a 400, not a validation error.
    key: Any = None
    message: Any = None


class WidgetMessageResponse(BaseModel):
    ok: bool
    reply: str


@router.get("/config", response_model=WidgetConfigResponse)
async def widget_config(
    key: str | None = Query(default=None),
    db: AsyncSession = Depends(get_db),
) -> Any:
    if not key:
        return JSONResponse(content=error_body("missing key"), status_code=400)
    tenant = await resolve_by_widget_key(db, key)
    if tenant is None:
        return JSONResponse(content=error_body("widget not found"), status_code=404)
    return WidgetConfigResponse(ok=True, tenantName=tenant.name, model=resolve_model(tenant))


def _run_to_response(run: PipelineRun) -> JSONResponse:
    if run.completed:
        return JSONResponse(content=WidgetMessageResponse(ok=True, reply=run.reply or "").model_dump())
    if run.reason in {REASON_NOT_FOUND, REASON_DISABLED}:
        return JSONResponse(content=error_body("widget not found"), status_code=404)
    if run.reason == REASON_ORIGIN_REJECTED:
        return JSONResponse(content=error_body("origin not allowed"), status_code=403)
    if run.reason == REASON_MISSING_PROVIDER_KEY:
        return JSONResponse(content=error_body("missing provider key"), status_code=500)
    if run.reason == REASON_COMPLETION_FAILED and run.error is not None:
        return JSONResponse(content=error_body(str(run.error)), status_code=500)
    return JSONResponse(content=error_body("internal error"), status_code=500)


@router.post("/message", response_model=WidgetMessageResponse)
async def widget_message(
    payload: WidgetMessageRequest | None = Body(default=None),
    origin: str | None = Header(default=None),
    pipeline: MessagePipeline = Depends(get_pipeline),
) -> JSONResponse:
    # An absent or null body counts as missing fields.
    if payload is None or not payload.key or not payload.message:
        return JSONResponse(content=error_body("missing key/message"), status_code=400)
    event = InboundEvent(
        channel=CHANNEL_WIDGET,
        text=str(payload.message),
        widget_key=str(payload.key),
        origin=origin,
    )
    run = await pipeline.process(event)
    return _run_to_response(run)
