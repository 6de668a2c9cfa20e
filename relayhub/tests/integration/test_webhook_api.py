from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from relayhub.apps.api.main import create_app
from relayhub.providers.channels.fake import FakeChannelClient
from relayhub.providers.llm.fake import FakeLLMProvider
from relayhub.services.telemetry import counters_snapshot
from relayhub.tests.utils.seed import get_credits, list_activity, seed_tenant


def _page_delivery(page_id: str, *messaging: dict) -> dict:
    return {"object": "page", "entry": [{"id": page_id, "time": 1700000000, "messaging": list(messaging)}]}


def _text_event(sender_id: str, text: str) -> dict:
    return {"sender": {"id": sender_id}, "recipient": {"id": "page"}, "message": {"mid": "m-1", "text": text}}


@pytest.mark.asyncio
async def test_webhook_handshake_echoes_challenge(session_factory) -> None:
    # A matching verify token returns the challenge as plain text.
    await seed_tenant(session_factory, channel_id="page-111", verify_token="verify-abc")
    app = create_app(session_factory=session_factory)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get(
            "/webhook",
            params={"hub.mode": "subscribe", "hub.verify_token": "verify-abc", "hub.challenge": "CHALLENGE_123"},
        )
    assert response.status_code == 200
    assert response.text == "CHALLENGE_123"


@pytest.mark.asyncio
async def test_webhook_handshake_rejects_bad_token(session_factory) -> None:
    # Unknown tokens and missing parameters are forbidden.
    await seed_tenant(session_factory, channel_id="page-111", verify_token="verify-abc")
    app = create_app(session_factory=session_factory)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        wrong = await client.get(
            "/webhook",
            params={"hub.mode": "subscribe", "hub.verify_token": "nope", "hub.challenge": "C"},
        )
        missing = await client.get("/webhook")
    assert wrong.status_code == 403
    assert missing.status_code == 403


@pytest.mark.asyncio
async def test_webhook_delivery_is_acknowledged_and_processed(session_factory) -> None:
    # The ack comes back immediately; each text message is replied to in the background.
    profile_id, page_id = await seed_tenant(session_factory, channel_id="page-111", credits=5)
    llm = FakeLLMProvider("Hello from Acme!")
    channel = FakeChannelClient()
    app = create_app(session_factory=session_factory, llm_provider=llm, channel_client=channel)
    body = _page_delivery(
        "page-111",
        _text_event("user-1", "hi"),
        _text_event("user-2", "hello"),
        {"sender": {"id": "page-111"}, "message": {"is_echo": True, "text": "our own reply"}},
        {"sender": {"id": "user-3"}, "message": {"attachments": [{"type": "image"}]}},
        {"sender": {"id": "user-4"}, "read": {"watermark": 1}},
    )
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post("/webhook", json=body)
    assert response.status_code == 200
    assert response.text == "EVENT_RECEIVED"

    await app.state.pipeline.drain(timeout_s=10)
    assert sorted(send.recipient_id for send in channel.sent) == ["user-1", "user-2"]
    assert len(await list_activity(session_factory, page_id)) == 2
    assert await get_credits(session_factory, profile_id) == 3
    assert counters_snapshot()["webhook.events_received"] == 2


@pytest.mark.asyncio
async def test_webhook_unknown_page_is_still_acknowledged(session_factory) -> None:
    # Deliveries for unregistered pages are acknowledged and dropped.
    channel = FakeChannelClient()
    app = create_app(session_factory=session_factory, channel_client=channel)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post("/webhook", json=_page_delivery("page-404", _text_event("user-1", "hi")))
    assert response.status_code == 200
    await app.state.pipeline.drain(timeout_s=10)
    assert channel.sent == []
    assert counters_snapshot()["pipeline.messaging.dropped.not_found"] == 1


@pytest.mark.asyncio
async def test_webhook_non_page_object_is_not_found(session_factory) -> None:
    # Only page deliveries are accepted.
    app = create_app(session_factory=session_factory)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post("/webhook", json={"object": "instagram", "entry": []})
    assert response.status_code == 404
    assert app.state.pipeline.inflight == 0


@pytest.mark.asyncio
async def test_webhook_malformed_delivery_is_acknowledged(session_factory) -> None:
    # Non-list entry or messaging fields are skipped, never a server error.
    app = create_app(session_factory=session_factory)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        bad_entry = await client.post("/webhook", json={"object": "page", "entry": 5})
        bad_messaging = await client.post("/webhook", json={"object": "page", "entry": [{"id": "p", "messaging": 7}]})
    assert bad_entry.status_code == 200
    assert bad_entry.text == "EVENT_RECEIVED"
    assert bad_messaging.status_code == 200
    assert bad_messaging.text == "EVENT_RECEIVED"
    assert app.state.pipeline.inflight == 0
