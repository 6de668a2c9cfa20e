from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from relayhub.core.errors import DatabaseError


logger = logging.getLogger(__name__)


def _message_from_detail(detail: Any) -> str:
    # Flatten FastAPI detail payloads into the single error string clients read.
    if isinstance(detail, dict):
        return str(detail.get("message") or detail.get("error") or "Request failed")
    if isinstance(detail, str):
        return detail
    return "Request failed"


def error_body(message: str) -> dict[str, str]:
    return {"error": message}


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        content=error_body(_message_from_detail(exc.detail)),
        status_code=exc.status_code,
        headers=exc.headers,
    )


async def starlette_http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    return JSONResponse(
        content=error_body(_message_from_detail(exc.detail)),
        status_code=exc.status_code,
        headers=exc.headers,
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    # Keep structured validation details for the widget script and API clients.
    return JSONResponse(
        content={"error": "Validation error", "details": exc.errors()},
        status_code=422,
    )


async def database_exception_handler(request: Request, exc: DatabaseError) -> JSONResponse:
    logger.error("request_database_error path=%s", request.url.path, exc_info=exc)
    return JSONResponse(content=error_body("internal error"), status_code=500)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Avoid leaking stack traces; the log line carries the details.
    logger.error("request_unhandled_error path=%s", request.url.path, exc_info=exc)
    return JSONResponse(content=error_body("internal error"), status_code=500)
