"""Correlation ID propagation for request and webhook tracing."""

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

# Set per request by the factory middleware; read by the JSON log formatter.
correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")

CORRELATION_ID_HEADER = "X-Correlation-ID"


def generate_correlation_id() -> str:
    """Generate a new correlation ID."""
    return uuid.uuid4().hex


def get_correlation_id() -> str:
    """Get current correlation ID from context ('' outside a request)."""
    return correlation_id_var.get()


@contextmanager
def correlation_scope(cid: str | None = None) -> Iterator[str]:
    """Bind a correlation ID for the duration of the block.

    A fresh ID is generated when ``cid`` is empty. The previous value is
    restored on exit, so scopes nest.
    """
    cid = cid or generate_correlation_id()
    token = correlation_id_var.set(cid)
    try:
        yield cid
    finally:
        correlation_id_var.reset(token)
