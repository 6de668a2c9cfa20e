from __future__ import annotations

from relayhub.core.config import get_settings
from relayhub.providers.llm.base import LLMProvider
from relayhub.providers.llm.fake import FakeLLMProvider
from relayhub.providers.llm.openrouter import OpenRouterProvider


def get_llm_provider() -> LLMProvider:
    settings = get_settings()
    provider = (settings.llm_provider or "openrouter").lower()

    if provider == "fake":
        return FakeLLMProvider()
    return OpenRouterProvider()
