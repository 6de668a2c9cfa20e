from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


# JSONB on Postgres, plain JSON on SQLite test databases.
JSONType = JSON().with_variant(JSONB(), "postgresql")

ROLE_ADMIN = "ADMIN"
ROLE_USER = "USER"


def _uuid() -> str:
    return str(uuid4())


class Base(DeclarativeBase):
    pass


class Profile(Base):
    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    # ADMIN bypasses metering; every other value is a standard account.
    role: Mapped[str] = mapped_column(String, default=ROLE_USER, nullable=False)
    # Nullable to match rows bootstrapped before credits existed; read as 0.
    credits: Mapped[int | None] = mapped_column(Integer, nullable=True, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    pages: Mapped[list["Page"]] = relationship(back_populates="profile")


class Page(Base):
    __tablename__ = "fb_pages"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    profile_id: Mapped[str] = mapped_column(String, ForeignKey("profiles.id"), index=True)
    name: Mapped[str] = mapped_column(String)
    # External channel id; webhook routing is keyed by this column.
    fb_page_id: Mapped[str | None] = mapped_column(String, unique=True, nullable=True)
    # Public key embedded in the website widget snippet.
    widget_key: Mapped[str | None] = mapped_column(String, unique=True, nullable=True)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    ai_model: Mapped[str | None] = mapped_column(String, nullable=True)
    # Credential columns hold vault envelopes, never cleartext.
    access_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    verify_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Keyed digest of the verify token for indexed handshake lookup; null on legacy rows.
    verify_token_digest: Mapped[str | None] = mapped_column(String, unique=True, nullable=True)
    openrouter_key: Mapped[str | None] = mapped_column(Text, nullable=True)
    allowed_domains: Mapped[list[str] | None] = mapped_column(JSONType, nullable=True)
    # Knowledge-entry titles to include on the messaging channel; empty means all.
    knowledge_base: Mapped[list[str] | None] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    profile: Mapped[Profile | None] = relationship(back_populates="pages")


class KnowledgeEntry(Base):
    __tablename__ = "knowledge_entries"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    profile_id: Mapped[str] = mapped_column(String, ForeignKey("profiles.id"), index=True)
    title: Mapped[str] = mapped_column(String)
    content: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class Product(Base):
    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    profile_id: Mapped[str] = mapped_column(String, ForeignKey("profiles.id"), index=True)
    name: Mapped[str] = mapped_column(String)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    price: Mapped[Any] = mapped_column(Numeric(12, 2), nullable=True)
    stock_quantity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class ActivityLog(Base):
    __tablename__ = "activity_logs"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    fb_page_id: Mapped[str] = mapped_column(String, ForeignKey("fb_pages.id"), index=True)
    # AUTO_REPLY for messaging, WIDGET_REPLY for widget exchanges.
    type: Mapped[str] = mapped_column(String)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
