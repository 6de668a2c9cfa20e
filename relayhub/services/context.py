from __future__ import annotations

from collections.abc import Iterable, Sequence
from decimal import Decimal
import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from relayhub.domain.models import Product
from relayhub.persistence.repos import knowledge as knowledge_repo


logger = logging.getLogger(__name__)

CATALOG_HEADER = "PRODUCT CATALOG:"


def _format_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, Decimal):
        # Numeric columns come back as Decimal("19.90"); render without trailing zeros.
        normalized = value.normalize()
        return f"{normalized:f}"
    return str(value)


def format_product_line(product: Product) -> str:
    return (
        f"- {product.name}: {_format_value(product.description)} "
        f"(Price: ${_format_value(product.price)}, Stock: {_format_value(product.stock_quantity)})"
    )


def render_catalog(products: Sequence[Product]) -> str:
    if not products:
        return ""
    return f"\n\n{CATALOG_HEADER}\n" + "\n".join(format_product_line(product) for product in products)


async def assemble_context(
    session: AsyncSession,
    account_id: str,
    title_filter: Iterable[str] | None = None,
) -> str:
    """Merge an account's knowledge entries and active product catalog into one text block.

    Store failures are non-fatal: a failed knowledge read yields empty knowledge,
    a failed product read (for example an account that never set up a catalog)
    yields no catalog block.
    """
    titles = [title for title in (title_filter or []) if title]
    try:
        contents = await knowledge_repo.list_knowledge_contents(session, account_id, titles or None)
    except SQLAlchemyError as exc:
        logger.error("context_knowledge_query_failed account_id=%s", account_id, exc_info=exc)
        await _reset_after_error(session)
        contents = []
    knowledge = "\n\n".join(contents)
    logger.debug(
        "context_knowledge_loaded account_id=%s entries=%d chars=%d filtered=%s",
        account_id,
        len(contents),
        len(knowledge),
        bool(titles),
    )

    try:
        products = await knowledge_repo.list_active_products(session, account_id)
    except SQLAlchemyError as exc:
        logger.warning("context_products_query_failed account_id=%s", account_id, exc_info=exc)
        await _reset_after_error(session)
        products = []
    logger.debug("context_products_loaded account_id=%s products=%d", account_id, len(products))

    return knowledge + render_catalog(products)


async def _reset_after_error(session: AsyncSession) -> None:
    # A failed statement leaves Postgres transactions aborted; roll back so later steps can query.
    try:
        await session.rollback()
    except SQLAlchemyError as exc:
        logger.warning("context_session_rollback_failed", exc_info=exc)
