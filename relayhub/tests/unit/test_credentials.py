from __future__ import annotations

from relayhub.core.config import get_settings
from relayhub.domain.events import TenantConfig
from relayhub.domain.models import Page
from relayhub.services.credentials import (
    apply_page_credentials,
    reencrypt_page_credentials,
    resolve_channel_token,
    resolve_model,
    resolve_provider_key,
)
from relayhub.services.crypto.vault import decrypt_secret, encrypt_secret, is_envelope, secret_digest


def _tenant(**overrides) -> TenantConfig:
    values = {"id": "p1", "name": "Acme", "account_id": "a1", "is_enabled": True}
    values.update(overrides)
    return TenantConfig(**values)


def test_provider_key_prefers_tenant_key(monkeypatch) -> None:
    # The tenant's own key wins over the process-wide key.
    monkeypatch.setenv("OPENROUTER_API_KEY", "global-key")
    get_settings.cache_clear()
    assert resolve_provider_key(_tenant(provider_key=encrypt_secret("tenant-key"))) == "tenant-key"
    assert resolve_provider_key(_tenant(provider_key=None)) == "global-key"
    # An undecryptable tenant key falls through to the global key.
    assert resolve_provider_key(_tenant(provider_key="enc:AAAA:BBBB:CCCC")) == "global-key"


def test_provider_key_absent_everywhere() -> None:
    # No tenant key and no global key.
    assert resolve_provider_key(_tenant()) is None


def test_channel_token_and_model() -> None:
    # Tokens decrypt; the model defaults when the tenant has none.
    assert resolve_channel_token(_tenant(access_token=encrypt_secret("EAAB"))) == "EAAB"
    assert resolve_channel_token(_tenant(access_token="enc:bad")) is None
    assert resolve_model(_tenant()) == "openai/gpt-5.2"
    assert resolve_model(_tenant(ai_model="anthropic/claude-sonnet")) == "anthropic/claude-sonnet"


def test_apply_page_credentials_encrypts_and_skips_masked() -> None:
    # Stored values are envelopes; masked echoes leave columns untouched.
    page = Page(id="p1", profile_id="a1", name="Acme")
    apply_page_credentials(page, access_token="EAAB-1", verify_token="verify-1", openrouter_key="sk-1")
    assert is_envelope(page.access_token) and decrypt_secret(page.access_token) == "EAAB-1"
    assert page.verify_token_digest == secret_digest("verify-1")
    original = page.access_token
    apply_page_credentials(page, access_token="***AB-1")
    assert page.access_token == original


def test_reencrypt_page_credentials_migrates_plaintext() -> None:
    # Legacy plaintext columns become envelopes and gain a digest.
    page = Page(id="p1", profile_id="a1", name="Acme", access_token="plain-token", verify_token="plain-verify")
    changed = reencrypt_page_credentials(page)
    assert changed == ["access_token", "verify_token", "verify_token_digest"]
    assert decrypt_secret(page.access_token) == "plain-token"
    assert page.verify_token_digest == secret_digest("plain-verify")
    assert reencrypt_page_credentials(page) == []
