from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from relayhub.domain.models import Page


async def get_page_by_channel_id(session: AsyncSession, fb_page_id: str) -> Page | None:
    # Load the owning profile in the same query; credit and role decisions need it.
    result = await session.execute(
        select(Page).options(joinedload(Page.profile)).where(Page.fb_page_id == fb_page_id)
    )
    return result.scalar_one_or_none()


async def get_page_by_widget_key(session: AsyncSession, widget_key: str) -> Page | None:
    result = await session.execute(select(Page).where(Page.widget_key == widget_key))
    return result.scalar_one_or_none()


async def list_pages_by_verify_digest(session: AsyncSession, digest: str) -> list[Page]:
    result = await session.execute(select(Page).where(Page.verify_token_digest == digest))
    return list(result.scalars().all())


async def list_legacy_verify_tokens(session: AsyncSession) -> list[tuple[str, str | None]]:
    # Rows written before digests existed can only be matched by decrypting each token.
    result = await session.execute(
        select(Page.id, Page.verify_token)
        .where(Page.verify_token_digest.is_(None), Page.verify_token.is_not(None))
        .order_by(Page.created_at, Page.id)
    )
    return [(row[0], row[1]) for row in result.all()]


async def list_pages_with_credentials(session: AsyncSession) -> list[Page]:
    # Stable ordering keeps re-encryption batches resumable.
    result = await session.execute(select(Page).order_by(Page.created_at, Page.id))
    return list(result.scalars().all())
