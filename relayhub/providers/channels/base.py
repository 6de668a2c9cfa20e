from __future__ import annotations

from typing import Protocol


class ChannelClient(Protocol):
    async def send_text(self, recipient_id: str, text: str, *, access_token: str) -> None:
        ...
