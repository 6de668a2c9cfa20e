"""Symmetric encryption of tenant credentials at rest.

Values are stored as ``enc:<nonce_b64>:<tag_b64>:<ciphertext_b64>`` (AES-256-GCM).
Envelopes written while the process runs on the hard-coded default key carry a
trailing ``:fallback`` segment so they can be found and re-encrypted once real
key material is configured.

Every public function degrades to an empty or absent value instead of raising;
callers treat ``""`` from :func:`decrypt_secret` as "secret unavailable".
"""
from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
import logging
import os
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from relayhub.core.config import get_settings
from relayhub.services.crypto.utils import (
    b64decode_str,
    b64encode_bytes,
    hmac_sha256_hex,
    sha256_digest,
)


logger = logging.getLogger(__name__)

ENVELOPE_PREFIX = "enc"
FALLBACK_KEY_TAG = "fallback"
MASK_PREFIX = "***"
_SEPARATOR = ":"
_NONCE_BYTES = 12
_TAG_BYTES = 16
# Last resort so a misconfigured deploy still starts; flagged loudly at key load.
_DEFAULT_KEY_SEED = "blockscom-default-key"

KEY_SOURCE_PRIMARY = "primary"
KEY_SOURCE_INFRASTRUCTURE = "infrastructure"
KEY_SOURCE_FALLBACK = "fallback"


@dataclass(frozen=True)
class VaultKeys:
    current: bytes
    source: str
    # Always available so ":fallback" envelopes stay readable after a real key is set.
    fallback: bytes

    @property
    def is_fallback(self) -> bool:
        return self.source == KEY_SOURCE_FALLBACK


@lru_cache
def get_vault_keys() -> VaultKeys:
    # Derived once per process; immutable and safe to share across tasks.
    settings = get_settings()
    fallback = sha256_digest(_DEFAULT_KEY_SEED)
    if settings.token_encryption_key:
        return VaultKeys(
            current=sha256_digest(settings.token_encryption_key),
            source=KEY_SOURCE_PRIMARY,
            fallback=fallback,
        )
    if settings.supabase_service_role_key:
        logger.warning(
            "vault_key_fallback source=%s hint=set TOKEN_ENCRYPTION_KEY",
            KEY_SOURCE_INFRASTRUCTURE,
        )
        return VaultKeys(
            current=sha256_digest(settings.supabase_service_role_key),
            source=KEY_SOURCE_INFRASTRUCTURE,
            fallback=fallback,
        )
    logger.warning(
        "vault_key_fallback source=%s hint=credentials are encrypted with a public default key",
        KEY_SOURCE_FALLBACK,
    )
    return VaultKeys(current=fallback, source=KEY_SOURCE_FALLBACK, fallback=fallback)


def reset_vault_keys() -> None:
    # Re-derive key material after settings change (tests, key rotation scripts).
    get_vault_keys.cache_clear()


def is_envelope(value: Any) -> bool:
    return isinstance(value, str) and value.startswith(ENVELOPE_PREFIX + _SEPARATOR)


def encrypt_secret(plain: Any) -> str | None:
    if plain is None or plain == "":
        return None
    keys = get_vault_keys()
    nonce = os.urandom(_NONCE_BYTES)
    sealed = AESGCM(keys.current).encrypt(nonce, str(plain).encode("utf-8"), None)
    cipher_text, tag = sealed[:-_TAG_BYTES], sealed[-_TAG_BYTES:]
    parts = [ENVELOPE_PREFIX, b64encode_bytes(nonce), b64encode_bytes(tag), b64encode_bytes(cipher_text)]
    if keys.is_fallback:
        parts.append(FALLBACK_KEY_TAG)
    return _SEPARATOR.join(parts)


def decrypt_secret(value: Any) -> str:
    if not value:
        return ""
    text = str(value)
    if not is_envelope(text):
        # Legacy rows written before encryption are treated as cleartext.
        return text

    parts = text.split(_SEPARATOR)
    if len(parts) not in (4, 5):
        logger.error("vault_decrypt_failed reason=malformed_envelope segments=%d", len(parts))
        return ""
    _, nonce_b64, tag_b64, data_b64 = parts[:4]
    key_tag = parts[4] if len(parts) == 5 else None
    if not nonce_b64 or not tag_b64 or not data_b64:
        logger.error(
            "vault_decrypt_failed reason=missing_segment nonce=%s tag=%s data=%s",
            bool(nonce_b64),
            bool(tag_b64),
            bool(data_b64),
        )
        return ""
    if key_tag is not None and key_tag != FALLBACK_KEY_TAG:
        logger.error("vault_decrypt_failed reason=unknown_key_tag")
        return ""

    keys = get_vault_keys()
    key = keys.fallback if key_tag == FALLBACK_KEY_TAG else keys.current
    try:
        nonce = b64decode_str(nonce_b64)
        tag = b64decode_str(tag_b64)
        cipher_text = b64decode_str(data_b64)
        plain = AESGCM(key).decrypt(nonce, cipher_text + tag, None)
        return plain.decode("utf-8")
    except InvalidTag:
        logger.error("vault_decrypt_failed reason=authentication_failed key_source=%s", keys.source)
        return ""
    except (ValueError, UnicodeDecodeError) as exc:
        logger.error("vault_decrypt_failed reason=%s", type(exc).__name__)
        return ""


def mask_secret(value: Any) -> str:
    plain = decrypt_secret(value)
    if not plain:
        return ""
    return "****" if len(plain) <= 4 else f"{MASK_PREFIX}{plain[-4:]}"


def is_masked(value: Any) -> bool:
    # Write paths skip re-encryption when the client echoes a masked value back.
    return isinstance(value, str) and value.startswith(MASK_PREFIX)


def secret_digest(plain: Any) -> str | None:
    # Keyed digest so verify tokens can be matched by indexed equality without decrypting rows.
    if plain is None or plain == "":
        return None
    return hmac_sha256_hex(get_vault_keys().current, str(plain))


def needs_reencrypt(value: Any) -> bool:
    if not value:
        return False
    text = str(value)
    if not is_envelope(text):
        return True
    keys = get_vault_keys()
    return text.endswith(_SEPARATOR + FALLBACK_KEY_TAG) and not keys.is_fallback
