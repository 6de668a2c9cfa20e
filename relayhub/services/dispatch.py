from __future__ import annotations

import logging

from relayhub.core.errors import DispatchError, ProviderConfigError
from relayhub.domain.events import CHANNEL_WIDGET, OutboundReply
from relayhub.providers.channels.base import ChannelClient


logger = logging.getLogger(__name__)


async def dispatch_reply(
    reply: OutboundReply,
    *,
    channel_client: ChannelClient | None = None,
    access_token: str | None = None,
) -> bool:
    """Deliver a reply to its channel and report whether it was delivered.

    Widget replies travel back in the HTTP response, so there is nothing to send.
    Messaging failures are logged here and never raised: the inbound webhook has
    already been acknowledged.
    """
    if reply.channel == CHANNEL_WIDGET:
        return True
    if channel_client is None or not access_token or not reply.recipient_id:
        logger.error(
            "dispatch_precondition_failed has_client=%s has_token=%s has_recipient=%s",
            channel_client is not None,
            bool(access_token),
            bool(reply.recipient_id),
        )
        return False
    try:
        await channel_client.send_text(reply.recipient_id, reply.text, access_token=access_token)
    except DispatchError as exc:
        logger.error(
            "dispatch_failed recipient_id=%s status=%s payload=%s",
            reply.recipient_id,
            exc.status_code,
            exc.payload,
        )
        return False
    except ProviderConfigError as exc:
        logger.error("dispatch_failed recipient_id=%s reason=%s", reply.recipient_id, exc)
        return False
    logger.info("dispatch_ok recipient_id=%s chars=%d", reply.recipient_id, len(reply.text))
    return True
