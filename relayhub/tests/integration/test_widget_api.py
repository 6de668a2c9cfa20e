from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.exc import OperationalError

from relayhub.apps.api.main import create_app
from relayhub.core.errors import CompletionError
from relayhub.providers.llm.fake import FakeLLMProvider
from relayhub.tests.utils.seed import add_knowledge, get_credits, list_activity, seed_tenant


def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.mark.asyncio
async def test_widget_config_lookup(session_factory) -> None:
    # Config returns the tenant name and effective model.
    await seed_tenant(session_factory, name="Acme", widget_key="wk-1")
    app = create_app(session_factory=session_factory)
    async with _client(app) as client:
        found = await client.get("/api/widget/config", params={"key": "wk-1"})
        missing_key = await client.get("/api/widget/config")
        unknown = await client.get("/api/widget/config", params={"key": "wk-unknown"})
    assert found.status_code == 200
    assert found.json() == {"ok": True, "tenantName": "Acme", "model": "openai/gpt-5.2"}
    assert missing_key.status_code == 400
    assert missing_key.json() == {"error": "missing key"}
    assert unknown.status_code == 404
    assert unknown.json() == {"error": "widget not found"}


@pytest.mark.asyncio
async def test_widget_config_hides_disabled_tenant(session_factory) -> None:
    # Disabled tenants look like unknown widgets.
    await seed_tenant(session_factory, widget_key="wk-1", is_enabled=False)
    app = create_app(session_factory=session_factory)
    async with _client(app) as client:
        response = await client.get("/api/widget/config", params={"key": "wk-1"})
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_widget_message_replies_inline_without_charge(session_factory) -> None:
    # The reply is returned in the response, logged as a widget reply, and never metered.
    profile_id, page_id = await seed_tenant(
        session_factory, name="Acme", widget_key="wk-1", credits=0, knowledge_titles=["Hours"]
    )
    await add_knowledge(session_factory, profile_id, [("Hours", "Open 9-5."), ("Returns", "30 days.")])
    llm = FakeLLMProvider("We are open 9-5.")
    app = create_app(session_factory=session_factory, llm_provider=llm)
    async with _client(app) as client:
        response = await client.post("/api/widget/message", json={"key": "wk-1", "message": "When are you open?"})
    assert response.status_code == 200
    assert response.json() == {"ok": True, "reply": "We are open 9-5."}
    # The widget ignores the messaging title filter.
    assert llm.calls[0].system_prompt == (
        "You are Blockscom website assistant for Acme. Use this knowledge base:\nOpen 9-5.\n\n30 days."
    )
    rows = await list_activity(session_factory, page_id)
    assert [(row.type, row.payload) for row in rows] == [
        ("WIDGET_REPLY", {"in": "When are you open?", "out": "We are open 9-5."})
    ]
    assert await get_credits(session_factory, profile_id) == 0


@pytest.mark.asyncio
async def test_widget_message_requires_key_and_message(session_factory) -> None:
    # Missing fields are a 400, not a validation error.
    app = create_app(session_factory=session_factory)
    async with _client(app) as client:
        no_message = await client.post("/api/widget/message", json={"key": "wk-1"})
        no_key = await client.post("/api/widget/message", json={"message": "hi"})
        no_body = await client.post("/api/widget/message")
        null_body = await client.post(
            "/api/widget/message", content="null", headers={"content-type": "application/json"}
        )
    assert no_message.status_code == 400
    assert no_message.json() == {"error": "missing key/message"}
    assert no_key.status_code == 400
    assert no_body.status_code == 400
    assert no_body.json() == {"error": "missing key/message"}
    assert null_body.status_code == 400
    assert null_body.json() == {"error": "missing key/message"}


@pytest.mark.asyncio
async def test_widget_message_unknown_key_is_not_found(session_factory) -> None:
    # Unknown widget keys return 404 and write nothing.
    _profile_id, page_id = await seed_tenant(session_factory, widget_key="wk-1")
    llm = FakeLLMProvider()
    app = create_app(session_factory=session_factory, llm_provider=llm)
    async with _client(app) as client:
        response = await client.post("/api/widget/message", json={"key": "wk-nope", "message": "hi"})
    assert response.status_code == 404
    assert response.json() == {"error": "widget not found"}
    assert llm.calls == []
    assert await list_activity(session_factory, page_id) == []


@pytest.mark.asyncio
async def test_widget_message_rejects_foreign_origin(session_factory) -> None:
    # Origins outside a non-empty allow-list are refused before any completion call.
    await seed_tenant(session_factory, widget_key="wk-1", allowed_domains=["shop.example.com"])
    llm = FakeLLMProvider("ok")
    app = create_app(session_factory=session_factory, llm_provider=llm)
    async with _client(app) as client:
        rejected = await client.post(
            "/api/widget/message",
            json={"key": "wk-1", "message": "hi"},
            headers={"Origin": "https://evil.example.net"},
        )
        allowed = await client.post(
            "/api/widget/message",
            json={"key": "wk-1", "message": "hi"},
            headers={"Origin": "https://www.shop.example.com"},
        )
    assert rejected.status_code == 403
    assert rejected.json() == {"error": "origin not allowed"}
    assert allowed.status_code == 200
    assert len(llm.calls) == 1


@pytest.mark.asyncio
async def test_widget_message_missing_provider_key(session_factory) -> None:
    # No tenant or process-wide key is a server-side configuration error.
    await seed_tenant(session_factory, widget_key="wk-1", openrouter_key=None)
    app = create_app(session_factory=session_factory)
    async with _client(app) as client:
        response = await client.post("/api/widget/message", json={"key": "wk-1", "message": "hi"})
    assert response.status_code == 500
    assert response.json() == {"error": "missing provider key"}


@pytest.mark.asyncio
async def test_widget_message_completion_failure_surfaces_message(session_factory) -> None:
    # Provider failures are reported with their message.
    _profile_id, page_id = await seed_tenant(session_factory, widget_key="wk-1")
    llm = FakeLLMProvider(error=CompletionError("OpenRouter error: 429", status_code=429))
    app = create_app(session_factory=session_factory, llm_provider=llm)
    async with _client(app) as client:
        response = await client.post("/api/widget/message", json={"key": "wk-1", "message": "hi"})
    assert response.status_code == 500
    assert response.json() == {"error": "OpenRouter error: 429"}
    assert await list_activity(session_factory, page_id) == []


@pytest.mark.asyncio
async def test_cors_reflects_request_origin(session_factory) -> None:
    # Any embedding site may call the widget API.
    app = create_app(session_factory=session_factory)
    async with _client(app) as client:
        preflight = await client.options(
            "/api/widget/message",
            headers={
                "Origin": "https://shop.example.com",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "Content-Type",
            },
        )
    assert preflight.status_code == 200
    assert preflight.headers["access-control-allow-origin"] == "https://shop.example.com"


@pytest.mark.asyncio
async def test_widget_message_store_outage_is_internal_error(session_factory, monkeypatch) -> None:
    # A failing tenant lookup is a 500 with a generic body and no completion call.
    async def lookup_fails(session, widget_key):
        raise OperationalError("SELECT fb_pages", {}, Exception("connection lost"))

    monkeypatch.setattr("relayhub.persistence.repos.tenants.get_page_by_widget_key", lookup_fails)
    llm = FakeLLMProvider()
    app = create_app(session_factory=session_factory, llm_provider=llm)
    async with _client(app) as client:
        response = await client.post("/api/widget/message", json={"key": "wk-1", "message": "hi"})
    assert response.status_code == 500
    assert response.json() == {"error": "internal error"}
    assert llm.calls == []
