from __future__ import annotations

from dataclasses import dataclass
import hmac
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from relayhub.persistence.repos import tenants as tenants_repo
from relayhub.services.crypto.vault import decrypt_secret, secret_digest
from relayhub.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

SUBSCRIBE_MODE = "subscribe"


@dataclass(frozen=True)
class VerificationResult:
    status_code: int
    body: str = ""
    tenant_id: str | None = None

    @property
    def verified(self) -> bool:
        return self.status_code == 200


_FORBIDDEN = VerificationResult(status_code=403, body="Forbidden")


async def verify_subscription(
    session: AsyncSession,
    *,
    mode: str | None,
    token: str | None,
    challenge: str | None,
) -> VerificationResult:
    # Answer the channel provider's one-time subscription handshake.
    if mode != SUBSCRIBE_MODE or not token:
        increment_counter("webhook.verify.rejected")
        return _FORBIDDEN

    try:
        matches = await _matching_tenant_ids(session, token)
    except SQLAlchemyError as exc:
        logger.error("webhook_verify_db_error", exc_info=exc)
        increment_counter("webhook.verify.error")
        return VerificationResult(status_code=500, body="Internal Server Error")

    if not matches:
        logger.warning("webhook_verify_failed reason=invalid_token")
        increment_counter("webhook.verify.rejected")
        return _FORBIDDEN
    if len(matches) > 1:
        # Two tenants sharing a verify token cannot be told apart; refuse rather than guess.
        logger.warning("webhook_verify_failed reason=ambiguous_token tenants=%d", len(matches))
        increment_counter("webhook.verify.ambiguous")
        return _FORBIDDEN

    logger.info("webhook_verified tenant_id=%s", matches[0])
    increment_counter("webhook.verify.accepted")
    return VerificationResult(status_code=200, body=challenge or "", tenant_id=matches[0])


async def _matching_tenant_ids(session: AsyncSession, token: str) -> list[str]:
    matches: list[str] = []
    digest = secret_digest(token)
    if digest:
        for page in await tenants_repo.list_pages_by_verify_digest(session, digest):
            # Digest equality is necessary but the stored envelope stays authoritative.
            if _tokens_equal(decrypt_secret(page.verify_token), token):
                matches.append(page.id)
    for page_id, stored in await tenants_repo.list_legacy_verify_tokens(session):
        plain = decrypt_secret(stored)
        if plain and _tokens_equal(plain, token):
            matches.append(page_id)
    return matches


def _tokens_equal(stored: str, candidate: str) -> bool:
    # Compare as bytes; compare_digest rejects non-ASCII str arguments.
    return hmac.compare_digest(stored.encode("utf-8"), candidate.encode("utf-8"))
