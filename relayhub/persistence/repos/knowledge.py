from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from relayhub.domain.models import KnowledgeEntry, Product


async def list_knowledge_contents(
    session: AsyncSession,
    profile_id: str,
    titles: Iterable[str] | None = None,
) -> list[str]:
    # Exact title match only; an empty or missing filter selects every entry.
    query = select(KnowledgeEntry.content).where(KnowledgeEntry.profile_id == profile_id)
    title_list = [title for title in (titles or []) if title]
    if title_list:
        query = query.where(KnowledgeEntry.title.in_(title_list))
    result = await session.execute(query.order_by(KnowledgeEntry.created_at, KnowledgeEntry.id))
    return [content for content in result.scalars().all() if content is not None]


async def list_active_products(session: AsyncSession, profile_id: str) -> list[Product]:
    result = await session.execute(
        select(Product)
        .where(Product.profile_id == profile_id, Product.is_active.is_(True))
        .order_by(Product.created_at, Product.id)
    )
    return list(result.scalars().all())
