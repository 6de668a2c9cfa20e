from __future__ import annotations

import logging

from relayhub.core.config import get_settings


_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging() -> None:
    # Idempotent: uvicorn reloads and test app factories may call this repeatedly.
    settings = get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level, format=_LOG_FORMAT)
    root.setLevel(level)
    # httpx logs every request URL at INFO, which would include the Graph access_token query param.
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))
