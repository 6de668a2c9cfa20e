from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, Query
from fastapi.responses import PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from relayhub.apps.api.deps import get_db, get_pipeline
from relayhub.domain.events import CHANNEL_MESSAGING, InboundEvent
from relayhub.services.pipeline import MessagePipeline
from relayhub.services.telemetry import increment_counter
from relayhub.services.webhook_verifier import verify_subscription

logger = logging.getLogger(__name__)
router = APIRouter(tags=["webhook"])

PAGE_OBJECT = "page"
ACK_BODY = "EVENT_RECEIVED"


def extract_message_events(body: dict[str, Any]) -> list[InboundEvent]:
    """Flatten a page webhook delivery into one inbound event per text message.

    Echoes of the page's own messages and non-text events (attachments,
    reads, postbacks) are skipped.
    """
    events: list[InboundEvent] = []
    entries = body.get("entry")
    if not isinstance(entries, list):
        return events
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        channel_id = str(entry.get("id") or "")
        messaging = entry.get("messaging")
        if not isinstance(messaging, list):
            continue
        for item in messaging:
            if not isinstance(item, dict):
                continue
            message = item.get("message")
            if not isinstance(message, dict) or message.get("is_echo"):
                continue
            text = message.get("text")
            sender = item.get("sender") if isinstance(item.get("sender"), dict) else {}
            if not text or not sender.get("id"):
                continue
            events.append(
                InboundEvent(
                    channel=CHANNEL_MESSAGING,
                    text=str(text),
                    sender_id=str(sender["id"]),
                    channel_id=channel_id,
                )
            )
    return events


@router.get("/webhook", response_class=PlainTextResponse)
async def webhook_verify(
    hub_mode: str | None = Query(default=None, alias="hub.mode"),
    hub_verify_token: str | None = Query(default=None, alias="hub.verify_token"),
    hub_challenge: str | None = Query(default=None, alias="hub.challenge"),
    db: AsyncSession = Depends(get_db),
) -> PlainTextResponse:
    result = await verify_subscription(
        db,
        mode=hub_mode,
        token=hub_verify_token,
        challenge=hub_challenge,
    )
    return PlainTextResponse(content=result.body, status_code=result.status_code)


@router.post("/webhook", response_class=PlainTextResponse)
async def webhook_receive(
    body: dict[str, Any] = Body(...),
    pipeline: MessagePipeline = Depends(get_pipeline),
) -> PlainTextResponse:
    if body.get("object") != PAGE_OBJECT:
        return PlainTextResponse(content="Not Found", status_code=404)

    # Acknowledge regardless of downstream outcome; each message runs as its own task.
    events = extract_message_events(body)
    for event in events:
        pipeline.schedule(event)
    increment_counter("webhook.events_received", len(events))
    logger.info("webhook_delivery_accepted events=%d", len(events))
    return PlainTextResponse(content=ACK_BODY, status_code=200)
