from __future__ import annotations

from dataclasses import dataclass

from relayhub.core.errors import DispatchError


@dataclass(frozen=True)
class FakeSend:
    recipient_id: str
    text: str
    access_token: str


class FakeChannelClient:
    def __init__(self, *, error: DispatchError | None = None) -> None:
        self._error = error
        self.sent: list[FakeSend] = []

    async def send_text(self, recipient_id: str, text: str, *, access_token: str) -> None:
        if self._error is not None:
            raise self._error
        self.sent.append(FakeSend(recipient_id=recipient_id, text=text, access_token=access_token))
