# delayqueue/middleware/correlation.py
"""
Correlation ids for log records.

A dispatcher binds "task-<id>" while it executes a task, so the poll, the
taskable's own logging (also on the timeout worker thread, which copies the
context) and the terminal write share one id. The admin API binds the
X-Correlation-ID of each request.
"""

import logging
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

NO_CORRELATION_ID = "no-corr-id"

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default=NO_CORRELATION_ID)


def get_correlation_id() -> str:
    return correlation_id_var.get()


def generate_correlation_id() -> str:
    return f"corr-{uuid.uuid4().hex[:12]}"


@contextmanager
def bind_correlation_id(value: str) -> Iterator[str]:
    """Set the correlation id for the enclosed block, restoring the previous one after"""
    reset_token = correlation_id_var.set(value)
    try:
        yield value
    finally:
        correlation_id_var.reset(reset_token)


def task_context(task_id: str):
    return bind_correlation_id(f"task-{task_id}")


class CorrelationIdFilter(logging.Filter):
    """Adds record.correlation_id for the structured log format"""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id()
        return True


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Reuses the caller's X-Correlation-ID or mints one, and echoes it in the response"""

    HEADER_NAME = "X-Correlation-ID"

    async def dispatch(self, request: Request, call_next) -> Response:
        corr_id = request.headers.get(self.HEADER_NAME) or generate_correlation_id()
        with bind_correlation_id(corr_id):
            response = await call_next(request)
        response.headers[self.HEADER_NAME] = corr_id
        return response
