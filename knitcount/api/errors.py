"""Translate counter engine errors into JSON responses."""

from __future__ import annotations

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..core.errors import CounterEngineError

logger = structlog.get_logger(__name__)


async def counter_engine_error_handler(request: Request, exc: CounterEngineError) -> JSONResponse:
    logger.info(
        "api.request.rejected",
        path=request.url.path,
        method=request.method,
        code=exc.code,
        status=exc.status_code,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(CounterEngineError, counter_engine_error_handler)
