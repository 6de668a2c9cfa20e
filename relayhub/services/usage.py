from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from relayhub.domain.events import AccountSnapshot
from relayhub.persistence.repos import profiles as profiles_repo
from relayhub.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

ACTIVITY_AUTO_REPLY = "AUTO_REPLY"
ACTIVITY_WIDGET_REPLY = "WIDGET_REPLY"


def check_credits(account: AccountSnapshot | None) -> bool:
    # Tenants without a loaded account are not gated; elevated accounts never are.
    if account is None:
        return True
    if account.is_elevated:
        return True
    return (account.credits or 0) > 0


async def log_activity(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    tenant_id: str,
    type_tag: str,
    input_text: str,
    output_text: str,
) -> bool:
    # Append-only and best effort: a failed write is reported to operators, never to callers.
    async with session_factory() as session:
        try:
            await profiles_repo.add_activity_log(
                session,
                page_id=tenant_id,
                type_tag=type_tag,
                payload={"in": input_text, "out": output_text},
            )
            await session.commit()
        except SQLAlchemyError as exc:
            await session.rollback()
            logger.warning("activity_log_write_failed tenant_id=%s type=%s", tenant_id, type_tag, exc_info=exc)
            increment_counter("activity_log.write_failed")
            return False
    return True


async def decrement_credit(session: AsyncSession, account: AccountSnapshot | None) -> bool:
    """Charge one credit for a dispatched reply; returns whether a credit was taken.

    Elevated accounts are never charged. The update is conditional on a positive
    balance, so two events racing past the credit check at balance 1 charge once.
    """
    if account is None or account.is_elevated:
        return False
    try:
        applied = await profiles_repo.decrement_credits_if_positive(session, account.id)
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.error("credit_decrement_failed account_id=%s", account.id, exc_info=exc)
        increment_counter("credits.decrement_failed")
        return False
    if not applied:
        # Balance reached zero under a concurrent event; the reply went out unmetered.
        logger.warning("credit_decrement_skipped account_id=%s reason=balance_exhausted", account.id)
        increment_counter("credits.decrement_skipped")
    return applied
