"""Translate typed engine errors into HTTP responses."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from memoryengine.errors import (
    AuthError,
    DimensionMismatch,
    MemoryEngineError,
    RateLimited,
    TenantScopeViolation,
    TransientError,
)

logger = logging.getLogger(__name__)

_STATUS = (
    (RateLimited, 429),
    (TransientError, 503),
    (AuthError, 502),
    (TenantScopeViolation, 400),
    (DimensionMismatch, 500),
)


def status_for(exc: MemoryEngineError) -> int:
    for exc_type, status in _STATUS:
        if isinstance(exc, exc_type):
            return status
    return 502


async def memory_engine_error_handler(request: Request, exc: MemoryEngineError) -> JSONResponse:
    status = status_for(exc)
    logger.warning("%s %s -> %d (%s): %s", request.method, request.url.path, status, exc.kind.value, exc)
    headers = {}
    if isinstance(exc, RateLimited) and exc.retry_after:
        headers["Retry-After"] = str(int(exc.retry_after))
    return JSONResponse(
        status_code=status,
        content={"error": {"kind": exc.kind.value, "message": str(exc)}},
        headers=headers,
    )


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(MemoryEngineError, memory_engine_error_handler)
