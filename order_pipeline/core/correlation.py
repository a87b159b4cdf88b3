# order_pipeline/core/correlation.py
import uuid
from contextvars import ContextVar
from typing import Optional

from fastapi import Request

CORRELATION_HEADER = "X-Correlation-ID"

correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)


def get_correlation_id() -> Optional[str]:
    return correlation_id_var.get()


async def correlation_id_middleware(request: Request, call_next):
    """Reuse an incoming X-Correlation-ID or mint one, and echo it on the response."""
    correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
    request.state.correlation_id = correlation_id
    token = correlation_id_var.set(correlation_id)
    try:
        response = await call_next(request)
    finally:
        correlation_id_var.reset(token)
    response.headers[CORRELATION_HEADER] = correlation_id
    return response
