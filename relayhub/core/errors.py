from __future__ import annotations

from typing import Any


class RelayError(Exception):
    """Base error for relayhub."""


class ProviderConfigError(RelayError):
    """Missing or invalid provider configuration (no key, no channel credential)."""


class SecretUnavailableError(ProviderConfigError):
    """A stored credential exists but could not be decrypted."""


class ExternalCallError(RelayError):
    """External provider call failed; carries the provider payload when available."""

    def __init__(self, message: str, *, status_code: int | None = None, payload: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


class CompletionError(ExternalCallError):
    """Completion provider request failed or timed out."""


class DispatchError(ExternalCallError):
    """Channel send request failed or timed out."""


class DatabaseError(RelayError):
    """Database layer failure."""
