from __future__ import annotations

from relayhub.core.config import get_settings
from relayhub.domain.events import TenantConfig
from relayhub.domain.models import Page
from relayhub.services.crypto.vault import (
    decrypt_secret,
    encrypt_secret,
    is_masked,
    needs_reencrypt,
    secret_digest,
)


def resolve_provider_key(tenant: TenantConfig) -> str | None:
    # Tenant key when present and decryptable, else the process-wide key, else nothing.
    tenant_key = decrypt_secret(tenant.provider_key)
    if tenant_key:
        return tenant_key
    return get_settings().openrouter_api_key or None


def resolve_channel_token(tenant: TenantConfig) -> str | None:
    # An undecryptable token is unavailable, never "empty but valid".
    return decrypt_secret(tenant.access_token) or None


def resolve_model(tenant: TenantConfig) -> str:
    return tenant.ai_model or get_settings().default_ai_model


def apply_page_credentials(
    page: Page,
    *,
    access_token: str | None = None,
    verify_token: str | None = None,
    openrouter_key: str | None = None,
) -> None:
    """Encrypt and store credentials on a page row.

    ``None`` leaves a column untouched, as does a masked value echoed back by a
    dashboard form. An empty string clears the credential.
    """
    if access_token is not None and not is_masked(access_token):
        page.access_token = encrypt_secret(access_token)
    if openrouter_key is not None and not is_masked(openrouter_key):
        page.openrouter_key = encrypt_secret(openrouter_key)
    if verify_token is not None and not is_masked(verify_token):
        page.verify_token = encrypt_secret(verify_token)
        page.verify_token_digest = secret_digest(verify_token)


def reencrypt_page_credentials(page: Page) -> list[str]:
    """Rewrite stale credential envelopes under the current key.

    Returns the names of the columns that changed. The verify-token digest is
    recomputed whenever the token is readable, since digests are keyed too.
    """
    changed: list[str] = []
    for column in ("access_token", "openrouter_key", "verify_token"):
        stored = getattr(page, column)
        if not needs_reencrypt(stored):
            continue
        plain = decrypt_secret(stored)
        if not plain:
            continue
        setattr(page, column, encrypt_secret(plain))
        changed.append(column)
    verify_plain = decrypt_secret(page.verify_token)
    digest = secret_digest(verify_plain) if verify_plain else None
    if digest != page.verify_token_digest:
        page.verify_token_digest = digest
        changed.append("verify_token_digest")
    return changed
