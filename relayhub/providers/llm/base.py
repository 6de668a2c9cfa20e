from __future__ import annotations

from typing import Protocol


class LLMProvider(Protocol):
    async def complete(
        self,
        system_prompt: str,
        user_text: str,
        *,
        model: str,
        api_key: str,
        fallback_reply: str | None = None,
    ) -> str:
        ...
