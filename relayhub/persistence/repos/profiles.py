from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from relayhub.domain.models import ActivityLog, Profile


async def decrement_credits_if_positive(session: AsyncSession, profile_id: str) -> bool:
    # Single guarded UPDATE so concurrent events can never drive the balance below zero.
    result = await session.execute(
        update(Profile)
        .where(Profile.id == profile_id, Profile.credits > 0)
        .values(credits=Profile.credits - 1)
        .execution_options(synchronize_session=False)
    )
    return (result.rowcount or 0) > 0


async def add_activity_log(
    session: AsyncSession,
    *,
    page_id: str,
    type_tag: str,
    payload: dict,
) -> ActivityLog:
    entry = ActivityLog(fb_page_id=page_id, type=type_tag, payload=payload)
    session.add(entry)
    return entry
