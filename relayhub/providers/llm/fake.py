from __future__ import annotations

import asyncio
from dataclasses import dataclass

from relayhub.core.errors import CompletionError


@dataclass(frozen=True)
class FakeCompletionCall:
    system_prompt: str
    user_text: str
    model: str
    api_key: str


class FakeLLMProvider:
    def __init__(
        self,
        response: str = "This is a fake response.",
        *,
        error: CompletionError | None = None,
        gate: asyncio.Event | None = None,
    ) -> None:
        # Deterministic response keeps tests stable without external calls.
        self._response = response
        self._error = error
        # Optional gate lets tests hold concurrent completions at the same point.
        self._gate = gate
        self.calls: list[FakeCompletionCall] = []

    async def complete(
        self,
        system_prompt: str,
        user_text: str,
        *,
        model: str,
        api_key: str,
        fallback_reply: str | None = None,
    ) -> str:
        self.calls.append(
            FakeCompletionCall(system_prompt=system_prompt, user_text=user_text, model=model, api_key=api_key)
        )
        if self._gate is not None:
            await self._gate.wait()
        if self._error is not None:
            raise self._error
        return self._response or (fallback_reply or "")
