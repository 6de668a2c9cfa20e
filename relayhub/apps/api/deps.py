from __future__ import annotations

from typing import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from relayhub.services.pipeline import MessagePipeline


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with request.app.state.session_factory() as session:
        yield session


def get_pipeline(request: Request) -> MessagePipeline:
    return request.app.state.pipeline
