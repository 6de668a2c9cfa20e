from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from relayhub.domain.models import ROLE_ADMIN, Page, Profile


Channel = Literal["messaging", "widget"]

CHANNEL_MESSAGING: Channel = "messaging"
CHANNEL_WIDGET: Channel = "widget"


@dataclass(frozen=True)
class InboundEvent:
    # Transient carrier for one inbound chat message; never persisted.
    channel: Channel
    text: str
    sender_id: str | None = None
    # Messaging events are routed by external channel id, widget events by public key.
    channel_id: str | None = None
    widget_key: str | None = None
    origin: str | None = None


@dataclass(frozen=True)
class OutboundReply:
    channel: Channel
    text: str
    recipient_id: str | None = None


@dataclass(frozen=True)
class AccountSnapshot:
    id: str
    role: str
    credits: int
    email: str | None = None

    @property
    def is_elevated(self) -> bool:
        return self.role == ROLE_ADMIN

    @classmethod
    def from_row(cls, row: Profile) -> "AccountSnapshot":
        return cls(id=row.id, role=row.role, credits=int(row.credits or 0), email=row.email)


@dataclass(frozen=True)
class TenantConfig:
    # Detached snapshot so concurrent tasks never share ORM instances.
    id: str
    name: str
    account_id: str
    is_enabled: bool
    channel_id: str | None = None
    widget_key: str | None = None
    ai_model: str | None = None
    access_token: str | None = None
    verify_token: str | None = None
    provider_key: str | None = None
    allowed_origins: tuple[str, ...] = field(default_factory=tuple)
    knowledge_titles: tuple[str, ...] = field(default_factory=tuple)
    account: AccountSnapshot | None = None

    @classmethod
    def from_row(cls, row: Page, *, account: Profile | None = None) -> "TenantConfig":
        return cls(
            id=row.id,
            name=row.name,
            account_id=row.profile_id,
            is_enabled=bool(row.is_enabled),
            channel_id=row.fb_page_id,
            widget_key=row.widget_key,
            ai_model=row.ai_model,
            access_token=row.access_token,
            verify_token=row.verify_token,
            provider_key=row.openrouter_key,
            allowed_origins=tuple(str(item) for item in (row.allowed_domains or []) if item),
            knowledge_titles=tuple(str(item) for item in (row.knowledge_base or []) if item),
            account=AccountSnapshot.from_row(account) if account is not None else None,
        )

