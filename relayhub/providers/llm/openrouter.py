from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from relayhub.agent.prompts import build_messages
from relayhub.core.config import get_settings
from relayhub.core.errors import CompletionError, ProviderConfigError
from relayhub.services.telemetry import record_external_call


logger = logging.getLogger(__name__)

_INTEGRATION = "completion.openrouter"


def extract_reply(data: Any) -> str | None:
    # Tolerate any response shape; only choices[0].message.content counts as a reply.
    if not isinstance(data, dict):
        return None
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    first = choices[0]
    if not isinstance(first, dict):
        return None
    message = first.get("message")
    if not isinstance(message, dict):
        return None
    content = message.get("content")
    if isinstance(content, str) and content:
        return content
    return None


def _error_payload(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class OpenRouterProvider:
    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._settings = get_settings()
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        # Reuse a single client per provider for connection pooling.
        timeout_s = self._settings.ext_call_timeout_ms / 1000.0
        self._client = httpx.AsyncClient(timeout=timeout_s)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def complete(
        self,
        system_prompt: str,
        user_text: str,
        *,
        model: str,
        api_key: str,
        fallback_reply: str | None = None,
    ) -> str:
        # Never call the provider without a key.
        if not api_key:
            raise ProviderConfigError("No OpenRouter key available")

        resolved_model = model or self._settings.default_ai_model
        payload = {
            "model": resolved_model,
            "messages": build_messages(system_prompt, user_text),
        }
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": self._settings.openrouter_referer,
            "X-Title": self._settings.openrouter_title,
        }
        url = f"{self._settings.openrouter_base_url.rstrip('/')}/chat/completions"
        client = self._get_client()

        start = time.monotonic()
        logger.info("completion_request_start model=%s", resolved_model)
        try:
            response = await client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as exc:
            record_external_call(
                integration=_INTEGRATION,
                latency_ms=(time.monotonic() - start) * 1000.0,
                success=False,
            )
            raise CompletionError("OpenRouter request timed out.") from exc
        except httpx.HTTPError as exc:
            record_external_call(
                integration=_INTEGRATION,
                latency_ms=(time.monotonic() - start) * 1000.0,
                success=False,
            )
            raise CompletionError(f"OpenRouter request failed: {exc}") from exc

        if response.status_code >= 400:
            record_external_call(
                integration=_INTEGRATION,
                latency_ms=(time.monotonic() - start) * 1000.0,
                success=False,
            )
            raise CompletionError(
                f"OpenRouter error: {response.status_code}",
                status_code=response.status_code,
                payload=_error_payload(response),
            )

        record_external_call(
            integration=_INTEGRATION,
            latency_ms=(time.monotonic() - start) * 1000.0,
            success=True,
        )
        try:
            data = response.json()
        except ValueError:
            data = None
        reply = extract_reply(data)
        if reply is None:
            logger.warning("completion_unexpected_shape model=%s", resolved_model)
            return fallback_reply if fallback_reply is not None else self._settings.fallback_reply_messaging
        return reply
