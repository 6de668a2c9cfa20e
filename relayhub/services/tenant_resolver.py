from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from relayhub.core.errors import DatabaseError
from relayhub.domain.events import TenantConfig
from relayhub.persistence.repos import tenants as tenants_repo


logger = logging.getLogger(__name__)


async def resolve_by_channel_id(
    session: AsyncSession,
    channel_id: str,
    *,
    enabled_only: bool = True,
) -> TenantConfig | None:
    # Absent (and by default disabled) tenants are "not found", never an error.
    if not channel_id:
        return None
    try:
        page = await tenants_repo.get_page_by_channel_id(session, channel_id)
    except SQLAlchemyError as exc:
        logger.error("tenant_resolve_failed channel_id=%s", channel_id, exc_info=exc)
        raise DatabaseError("Tenant lookup by channel id failed") from exc
    if page is None:
        return None
    tenant = TenantConfig.from_row(page, account=page.profile)
    if enabled_only and not tenant.is_enabled:
        return None
    return tenant


async def resolve_by_widget_key(
    session: AsyncSession,
    widget_key: str,
    *,
    enabled_only: bool = True,
) -> TenantConfig | None:
    if not widget_key:
        return None
    try:
        page = await tenants_repo.get_page_by_widget_key(session, widget_key)
    except SQLAlchemyError as exc:
        logger.error("tenant_resolve_failed widget_key=%s", widget_key, exc_info=exc)
        raise DatabaseError("Tenant lookup by widget key failed") from exc
    if page is None:
        return None
    # The widget path has no credit gate, so the account is not loaded.
    tenant = TenantConfig.from_row(page)
    if enabled_only and not tenant.is_enabled:
        return None
    return tenant
