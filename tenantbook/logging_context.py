"""Correlation context for tracing a booking attempt across modules.

Provides a logger that attaches the current request ID and tenant ID to
every log record, so a single attempt can be followed from validation
through the upstream call to the local commit.

Usage:
    from tenantbook.logging_context import bind_request, get_request_logger

    bind_request("REQ-abc123", tenant_id="t-42")
    logger = get_request_logger(__name__)
    logger.info("Validating slot")  # record.request_id == "REQ-abc123"
"""

import logging
import uuid
from contextvars import ContextVar
from typing import Optional

_request_id: ContextVar[str] = ContextVar("request_id", default="NO_REQUEST_ID")
_tenant_id: ContextVar[str] = ContextVar("tenant_id", default="-")


def new_request_id() -> str:
    return f"REQ-{uuid.uuid4().hex[:8]}"


def bind_request(request_id: str, tenant_id: Optional[str] = None) -> None:
    """Set the correlation IDs for the current async context."""
    _request_id.set(request_id)
    if tenant_id is not None:
        _tenant_id.set(tenant_id)


def get_request_id() -> str:
    """Retrieve the current request ID."""
    return _request_id.get()


def get_tenant_id() -> str:
    """Retrieve the tenant bound to the current context."""
    return _tenant_id.get()


class RequestContextFilter(logging.Filter):
    """Injects request_id and tenant_id into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id.get()  # type: ignore[attr-defined]
        record.tenant_id = _tenant_id.get()  # type: ignore[attr-defined]
        return True


def get_request_logger(name: str) -> logging.Logger:
    """Return a logger with the RequestContextFilter attached.

    The filter adds ``request_id`` and ``tenant_id`` to each record so
    formatters can include ``%(request_id)s`` in their format string.
    """
    logger = logging.getLogger(name)
    if not any(isinstance(f, RequestContextFilter) for f in logger.filters):
        logger.addFilter(RequestContextFilter())
    return logger
