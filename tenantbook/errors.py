"""
Typed error taxonomy shared by the store, resolver, coordinator and admin API.

Every error carries the tenant and date it relates to (when known) so
callers can pick user-facing messaging without parsing strings.
"""

from typing import Optional

# HTTP statuses worth retrying on an idempotent read
RETRYABLE_STATUSES = frozenset({408, 425, 429, 500, 502, 503, 504})
RECONFIGURE_STATUSES = frozenset({401, 403})


class TenantBookError(Exception):
    """Base class for all domain errors."""

    def __init__(
        self,
        message: str,
        tenant_id: Optional[str] = None,
        date: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.tenant_id = tenant_id
        self.date = date


class ValidationError(TenantBookError, ValueError):
    """Malformed input: empty name, inverted window, break outside window."""

    def __init__(self, message: str, fields: Optional[list[str]] = None, **context) -> None:
        super().__init__(message, **context)
        self.fields = fields or []


class NotFoundError(TenantBookError, LookupError):
    """A referenced tenant, service, product or slot does not exist."""


class ConfigurationError(TenantBookError):
    """Tenant lacks external-provider linkage needed for the operation."""

    def __init__(self, message: str, missing: Optional[list[str]] = None, **context) -> None:
        super().__init__(message, **context)
        self.missing = missing or []


class UpstreamError(TenantBookError):
    """The external calendar provider failed, timed out, or answered garbage."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
        **context,
    ) -> None:
        super().__init__(message, **context)
        self.status_code = status_code
        self.body = body

    @property
    def retryable(self) -> bool:
        """Transport failures and transient statuses; never client errors."""
        return self.status_code is None or self.status_code in RETRYABLE_STATUSES

    @property
    def requires_reconfiguration(self) -> bool:
        return self.status_code in RECONFIGURE_STATUSES


class SlotUnavailableError(TenantBookError):
    """The requested time is no longer bookable."""

    def __init__(self, message: str, time: Optional[str] = None, **context) -> None:
        super().__init__(message, **context)
        self.time = time
