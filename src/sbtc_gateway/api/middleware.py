"""Request tracing and error-envelope middlewares."""
from __future__ import annotations

import time
from uuid import UUID, uuid4

import structlog
from aiohttp import web

from sbtc_gateway.core.exceptions import (
    ConfigurationError,
    ExplorerError,
    GatewayError,
    InvalidStateError,
    NotFoundError,
)

TRACE_ID_HEADER = "X-Trace-Id"
REQUEST_ID_HEADER = "X-Request-Id"

logger = structlog.get_logger(__name__)

# (status, error type) per domain exception; first match wins
_ERROR_MAP: list[tuple[type[GatewayError], int, str]] = [
    (NotFoundError, 404, "resource_missing"),
    (InvalidStateError, 400, "invalid_request_error"),
    (ConfigurationError, 400, "configuration_error"),
    (ExplorerError, 502, "explorer_unavailable"),
]


def _valid_uuid(value: str | None) -> bool:
    if not value:
        return False
    try:
        UUID(value)
    except ValueError:
        return False
    return True


def error_response(status: int, error_type: str, message: str) -> web.Response:
    return web.json_response({"error": {"type": error_type, "message": message}}, status=status)


def create_trace_middleware(service_name: str):
    """Bind trace/request ids into the structlog context for each request."""

    @web.middleware
    async def trace_middleware(request: web.Request, handler):
        started = time.monotonic()
        trace_id = request.headers.get(TRACE_ID_HEADER)
        if not _valid_uuid(trace_id):
            trace_id = str(uuid4())
        request_id = request.headers.get(REQUEST_ID_HEADER)
        if not _valid_uuid(request_id):
            request_id = str(uuid4())
        request["trace_id"] = trace_id
        request["request_id"] = request_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            trace_id=trace_id,
            request_id=request_id,
            service=service_name,
            method=request.method,
            path=request.path,
        )
        try:
            response = await handler(request)
        except web.HTTPException as exc:
            logger.warning(
                "Request failed with HTTP exception",
                status_code=exc.status_code,
                duration_ms=round((time.monotonic() - started) * 1000, 2),
            )
            raise
        except Exception:
            logger.exception(
                "Request failed with exception",
                duration_ms=round((time.monotonic() - started) * 1000, 2),
            )
            raise
        else:
            log = logger.warning if response.status >= 400 else logger.info
            log(
                "Request completed",
                status_code=response.status,
                duration_ms=round((time.monotonic() - started) * 1000, 2),
            )
            response.headers[TRACE_ID_HEADER] = trace_id
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            structlog.contextvars.clear_contextvars()

    return trace_middleware


@web.middleware
async def error_middleware(request: web.Request, handler):
    """Render domain errors as ``{"error": {"type", "message"}}``."""
    try:
        return await handler(request)
    except GatewayError as exc:
        for exc_type, status, error_type in _ERROR_MAP:
            if isinstance(exc, exc_type):
                return error_response(status, error_type, str(exc))
        raise
