"""Tags every API request with an X-Correlation-ID that also appears on its log lines."""
import uuid
from typing import Callable

import structlog.contextvars
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

HEADER_CORRELATION_ID = "X-Correlation-ID"


def resolve_correlation_id(request: Request) -> str:
    supplied = request.headers.get(HEADER_CORRELATION_ID, "").strip()
    return supplied or uuid.uuid4().hex


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = resolve_correlation_id(request)
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(correlation_id=correlation_id, path=request.url.path)
        response = await call_next(request)
        response.headers[HEADER_CORRELATION_ID] = correlation_id
        return response
