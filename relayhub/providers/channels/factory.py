from __future__ import annotations

from relayhub.core.config import get_settings
from relayhub.providers.channels.base import ChannelClient
from relayhub.providers.channels.fake import FakeChannelClient
from relayhub.providers.channels.graph import GraphSendClient


def get_channel_client() -> ChannelClient:
    settings = get_settings()
    provider = (settings.channel_provider or "graph").lower()

    if provider == "fake":
        return FakeChannelClient()
    return GraphSendClient()
