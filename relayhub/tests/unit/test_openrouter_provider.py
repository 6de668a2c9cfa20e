from __future__ import annotations

import json

import httpx
import pytest

from relayhub.core.errors import CompletionError, ProviderConfigError
from relayhub.providers.llm.openrouter import OpenRouterProvider, extract_reply
from relayhub.services.telemetry import counters_snapshot


def _provider(handler) -> OpenRouterProvider:
    # Route provider traffic through an in-process transport.
    return OpenRouterProvider(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


@pytest.mark.asyncio
async def test_complete_posts_model_messages_and_headers() -> None:
    # The request carries the model, two messages, and attribution headers.
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"choices": [{"message": {"content": "Hi there!"}}]})

    provider = _provider(handler)
    reply = await provider.complete("system text", "hello", model="openai/gpt-5.2", api_key="sk-or-1")
    await provider.aclose()

    assert reply == "Hi there!"
    assert seen["url"] == "https://openrouter.ai/api/v1/chat/completions"
    assert seen["headers"]["Authorization"] == "Bearer sk-or-1"
    assert seen["headers"]["HTTP-Referer"] == "https://blockscom.ai"
    assert seen["headers"]["X-Title"] == "Blockscom AI"
    assert seen["body"] == {
        "model": "openai/gpt-5.2",
        "messages": [
            {"role": "system", "content": "system text"},
            {"role": "user", "content": "hello"},
        ],
    }
    assert counters_snapshot()["external.completion.openrouter.success"] == 1


@pytest.mark.asyncio
async def test_complete_without_key_makes_no_call() -> None:
    # A missing key is a configuration error before any network traffic.
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={})

    provider = _provider(handler)
    with pytest.raises(ProviderConfigError):
        await provider.complete("sys", "hi", model="m", api_key="")
    assert calls == []


@pytest.mark.asyncio
async def test_complete_error_status_carries_payload() -> None:
    # Provider error payloads are attached to the raised error.
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(402, json={"error": {"message": "Insufficient credits"}})

    provider = _provider(handler)
    with pytest.raises(CompletionError) as excinfo:
        await provider.complete("sys", "hi", model="m", api_key="k")
    assert excinfo.value.status_code == 402
    assert excinfo.value.payload == {"error": {"message": "Insufficient credits"}}
    assert counters_snapshot()["external.completion.openrouter.failure"] == 1


@pytest.mark.asyncio
async def test_complete_timeout_is_completion_error() -> None:
    # Timeouts count as provider failures.
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    provider = _provider(handler)
    with pytest.raises(CompletionError):
        await provider.complete("sys", "hi", model="m", api_key="k")


@pytest.mark.asyncio
async def test_unexpected_shape_returns_fallback() -> None:
    # A 200 without choices yields the caller's fallback reply.
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"id": "gen-1", "choices": []})

    provider = _provider(handler)
    reply = await provider.complete("sys", "hi", model="m", api_key="k", fallback_reply="Fallback!")
    assert reply == "Fallback!"


def test_extract_reply_tolerates_odd_shapes() -> None:
    # Only choices[0].message.content counts.
    assert extract_reply({"choices": [{"message": {"content": "ok"}}]}) == "ok"
    assert extract_reply({"choices": [{"message": {"content": None}}]}) is None
    assert extract_reply({"choices": "nope"}) is None
    assert extract_reply(["not", "a", "dict"]) is None
    assert extract_reply(None) is None
