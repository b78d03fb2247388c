"""
Correlation IDs for log tracing.

HTTP requests get their ID from the X-Request-ID header (or a fresh UUID);
WebSocket connections get one ID for their whole lifetime, so every log line
produced while serving a socket can be grouped together.
"""

import logging
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Callable, Iterator

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

# Context variable for the active correlation ID (task-local)
correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")


def get_correlation_id() -> str:
    """Get the current correlation ID."""
    return correlation_id_var.get()


def new_correlation_id() -> str:
    """Generate a fresh correlation ID."""
    return uuid.uuid4().hex


@contextmanager
def correlation_scope(correlation_id: str | None = None) -> Iterator[str]:
    """
    Bind a correlation ID for the duration of the block.

    Usage:
        with correlation_scope() as cid:
            await endpoint.run()
    """
    value = correlation_id or new_correlation_id()
    token = correlation_id_var.set(value)
    try:
        yield value
    finally:
        correlation_id_var.reset(token)


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """
    Middleware to add correlation IDs to HTTP requests.

    - If X-Request-ID header is present, uses that value
    - Otherwise generates a new UUID
    - Returns the ID in response headers
    """

    HEADER_NAME = "X-Request-ID"

    async def dispatch(
        self,
        request: Request,
        call_next: Callable,
    ) -> Response:
        request_id = request.headers.get(self.HEADER_NAME) or new_correlation_id()

        with correlation_scope(request_id):
            request.state.request_id = request_id
            response = await call_next(request)
            response.headers[self.HEADER_NAME] = request_id
            return response


class CorrelationIdFilter(logging.Filter):
    """
    Logging filter that adds correlation_id to log records.

    Usage:
        handler = logging.StreamHandler()
        handler.addFilter(CorrelationIdFilter())
    """

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id_var.get() or "-"
        return True
