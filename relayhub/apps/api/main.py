from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
import logging
import time
from typing import Any, AsyncIterator
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.exceptions import HTTPException as StarletteHTTPException

from relayhub.apps.api.errors import (
    database_exception_handler,
    http_exception_handler,
    starlette_http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from relayhub.apps.api.routes.health import router as health_router
from relayhub.apps.api.routes.ops import router as ops_router
from relayhub.apps.api.routes.webhook import router as webhook_router
from relayhub.apps.api.routes.widget import router as widget_router
from relayhub.core.config import get_settings
from relayhub.core.errors import DatabaseError
from relayhub.core.logging import configure_logging
from relayhub.providers.channels.base import ChannelClient
from relayhub.providers.channels.factory import get_channel_client
from relayhub.providers.llm.base import LLMProvider
from relayhub.providers.llm.factory import get_llm_provider
from relayhub.services.pipeline import MessagePipeline
from relayhub.services.telemetry import record_request


logger = logging.getLogger(__name__)

_CORS_METHODS = ["GET", "POST", "PUT", "DELETE", "OPTIONS"]
_CORS_HEADERS = ["Content-Type", "Authorization"]


async def _aclose_if_supported(resource: Any) -> None:
    aclose = getattr(resource, "aclose", None)
    if aclose is not None:
        await aclose()


def create_app(
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    llm_provider: LLMProvider | None = None,
    channel_client: ChannelClient | None = None,
) -> FastAPI:
    configure_logging()
    settings = get_settings()

    if session_factory is None:
        from relayhub.persistence.db import SessionLocal

        session_factory = SessionLocal
    pipeline = MessagePipeline(
        session_factory=session_factory,
        llm_provider=llm_provider or get_llm_provider(),
        channel_client=channel_client or get_channel_client(),
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        # Give acknowledged messaging events a chance to finish before the loop stops.
        try:
            await pipeline.drain(timeout_s=settings.shutdown_drain_timeout_s)
        except asyncio.TimeoutError:
            logger.warning("shutdown_drain_timeout inflight=%d", pipeline.inflight)
        await _aclose_if_supported(pipeline.llm_provider)
        await _aclose_if_supported(pipeline.channel_client)

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.session_factory = session_factory
    app.state.pipeline = pipeline

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        record_request(
            path=request.url.path,
            status_code=response.status_code,
            latency_ms=(time.monotonic() - start) * 1000.0,
        )
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    # The widget is embedded on arbitrary tenant sites; reflect the caller's origin.
    app.add_middleware(
        CORSMiddleware,
        allow_origin_regex=".*",
        allow_methods=_CORS_METHODS,
        allow_headers=_CORS_HEADERS,
    )

    @app.exception_handler(StarletteHTTPException)
    async def _starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await starlette_http_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(DatabaseError)
    async def _database_exception_handler(request: Request, exc: DatabaseError):
        return await database_exception_handler(request, exc)

    app.include_router(webhook_router)
    app.include_router(widget_router)
    app.include_router(health_router)
    app.include_router(ops_router)

    return app


app = create_app()
