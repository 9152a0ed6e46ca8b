"""Map exceptions to JSON error bodies."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.responses import JSONResponse

from lfx_server.constants import ErrorCode
from lfx_server.errors import BaseApiError, ValidationError

logger = logging.getLogger(__name__)

_LEVELS = {
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "info": logging.INFO,
}


def _request_id(request: Request) -> str | None:
    ctx = getattr(request.state, "context", None)
    return ctx.request_id if ctx is not None else None


async def handle_api_error(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, BaseApiError)
    fields = exc.log_context()
    logger.log(
        _LEVELS[exc.severity],
        "event=api_error method=%s path=%s request_id=%s %s",
        request.method,
        request.url.path,
        _request_id(request),
        " ".join(f"{k}={v}" for k, v in fields.items()),
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_response(request.url.path),
    )


async def handle_request_validation(
    request: Request, exc: Exception
) -> JSONResponse:
    assert isinstance(exc, RequestValidationError)
    errors = [
        {
            "field": ".".join(str(p) for p in err.get("loc", ())[1:])
            or "body",
            "message": str(err.get("msg", "invalid")),
        }
        for err in exc.errors()
    ]
    return await handle_api_error(
        request, ValidationError.from_field_errors(errors)
    )


async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "event=unhandled_error method=%s path=%s request_id=%s",
        request.method,
        request.url.path,
        _request_id(request),
    )
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error. Please try again later.",
            "code": ErrorCode.INTERNAL_ERROR,
            "path": request.url.path,
        },
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BaseApiError, handle_api_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation)
    app.add_exception_handler(Exception, handle_unexpected)
