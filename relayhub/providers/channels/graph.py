from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from relayhub.core.config import get_settings
from relayhub.core.errors import DispatchError, ProviderConfigError
from relayhub.services.telemetry import record_external_call


logger = logging.getLogger(__name__)

_INTEGRATION = "channel.graph"


def _error_payload(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class GraphSendClient:
    """Messenger send API client; posts one text message per call."""

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._settings = get_settings()
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        timeout_s = self._settings.ext_call_timeout_ms / 1000.0
        self._client = httpx.AsyncClient(timeout=timeout_s)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def send_text(self, recipient_id: str, text: str, *, access_token: str) -> None:
        if not access_token:
            raise ProviderConfigError("No page access token available")

        url = f"{self._settings.graph_api_base.rstrip('/')}/me/messages"
        body = {"recipient": {"id": recipient_id}, "message": {"text": text}}
        client = self._get_client()

        start = time.monotonic()
        try:
            response = await client.post(url, json=body, params={"access_token": access_token})
        except httpx.HTTPError as exc:
            record_external_call(
                integration=_INTEGRATION,
                latency_ms=(time.monotonic() - start) * 1000.0,
                success=False,
            )
            raise DispatchError(f"Graph send failed: {type(exc).__name__}") from exc

        latency_ms = (time.monotonic() - start) * 1000.0
        if response.status_code >= 400:
            record_external_call(integration=_INTEGRATION, latency_ms=latency_ms, success=False)
            raise DispatchError(
                f"Graph send error: {response.status_code}",
                status_code=response.status_code,
                payload=_error_payload(response),
            )
        record_external_call(integration=_INTEGRATION, latency_ms=latency_ms, success=True)
        logger.debug("channel_send_ok recipient_id=%s status=%s", recipient_id, response.status_code)
