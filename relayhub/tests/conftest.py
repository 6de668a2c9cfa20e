from __future__ import annotations

from collections.abc import AsyncIterator

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from relayhub.core.config import get_settings
from relayhub.domain.models import Base
from relayhub.services.crypto.vault import reset_vault_keys
from relayhub.services.telemetry import reset_telemetry


TEST_ENCRYPTION_KEY = "test-token-encryption-key"


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch) -> None:
    # Pin key material and fake providers so no test reaches a real service.
    monkeypatch.setenv("TOKEN_ENCRYPTION_KEY", TEST_ENCRYPTION_KEY)
    monkeypatch.delenv("SUPABASE_SERVICE_ROLE_KEY", raising=False)
    monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)
    monkeypatch.setenv("LLM_PROVIDER", "fake")
    monkeypatch.setenv("CHANNEL_PROVIDER", "fake")
    get_settings.cache_clear()
    reset_vault_keys()
    reset_telemetry()
    yield
    get_settings.cache_clear()
    reset_vault_keys()
    reset_telemetry()


@pytest.fixture
async def session_factory(tmp_path) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    # A file database lets concurrent sessions see each other's commits.
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'relayhub.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()
