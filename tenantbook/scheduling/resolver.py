"""
Availability resolution: provider free/busy intersected with local policy.

For a tenant and date:
1. the tenant must be linked to a calendar (token + calendar id),
2. the date must have a configured work window, otherwise nothing is bookable,
3. the provider's free slots for the whole business-time-zone day are
   converted to ``HH:MM`` at whatever granularity the provider reports,
4. times outside the window, or inside its break, are dropped.

The free/busy query is idempotent and is retried with exponential backoff
on transient failures. Client errors (bad token, unknown calendar) are
raised immediately.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, time, timedelta
from typing import TYPE_CHECKING, Optional
from zoneinfo import ZoneInfo

from tenantbook.config import AppConfig, settings
from tenantbook.errors import ConfigurationError, UpstreamError, ValidationError
from tenantbook.gateway.freebusy import FreeBusyGateway, FreeSlots
from tenantbook.scheduling.policy import AvailabilityPolicy
from tenantbook.utils import parse_iso_date

if TYPE_CHECKING:
    from tenantbook.schemas.tenant_schema import Tenant
    from tenantbook.store.tenant_store import TenantStore

logger = logging.getLogger(__name__)

REQUIRED_LINKAGE = (("api_token", "apiToken"), ("calendar_id", "calendarId"))


def day_bounds_ms(day: str, tz: ZoneInfo) -> tuple[int, int]:
    """Epoch millis for [00:00 of ``day``, 00:00 of the next day) in ``tz``."""
    start_date = parse_iso_date(day)
    start = datetime.combine(start_date, time(0, 0), tzinfo=tz)
    end = datetime.combine(start_date + timedelta(days=1), time(0, 0), tzinfo=tz)
    return int(start.timestamp() * 1000), int(end.timestamp() * 1000)


def slot_to_hhmm(value: str, tz: ZoneInfo) -> str:
    """Convert one provider slot marker (ISO-8601 or epoch millis) to local HH:MM."""
    text = value.strip()
    if text.isdigit():
        moment = datetime.fromtimestamp(int(text) / 1000, tz)
    else:
        moment = datetime.fromisoformat(text.replace("Z", "+00:00"))
        moment = moment.replace(tzinfo=tz) if moment.tzinfo is None else moment.astimezone(tz)
    return moment.strftime("%H:%M")


def missing_linkage(tenant: Tenant, fields=REQUIRED_LINKAGE) -> list[str]:
    return [alias for attr, alias in fields if not getattr(tenant, attr)]


class AvailabilityResolver:
    """Produces the sorted bookable times for a tenant and date."""

    def __init__(
        self,
        store: TenantStore,
        gateway: FreeBusyGateway,
        config: AppConfig = settings,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._config = config
        self.policy = AvailabilityPolicy(store)

    @property
    def tzinfo(self) -> ZoneInfo:
        return self._config.booking.tzinfo

    async def resolve(self, tenant_id: str, date: str) -> list[str]:
        """
        Bookable ``HH:MM`` times for ``date``, ascending.

        Returns an empty list when the date has no window or the provider
        reports nothing free.

        Raises:
            NotFoundError: unknown tenant.
            ConfigurationError: tenant has no apiToken or calendarId.
            UpstreamError: the provider query failed after retries.
        """
        try:
            parse_iso_date(date)
        except ValueError:
            raise ValidationError(
                f"Invalid date {date!r}, expected YYYY-MM-DD",
                fields=["date"], tenant_id=tenant_id,
            ) from None

        tenant = await self._store.require(tenant_id)
        missing = missing_linkage(tenant)
        if missing:
            raise ConfigurationError(
                f"Tenant {tenant_id} is missing {', '.join(missing)}; "
                "complete the calendar settings before listing availability",
                missing=missing, tenant_id=tenant_id, date=date,
            )

        window = AvailabilityPolicy.window_in(tenant.availability_slots, date)
        if window is None:
            logger.debug("No work window for tenant %s on %s", tenant_id, date)
            return []

        start_ms, end_ms = day_bounds_ms(date, self.tzinfo)
        free = await self._query_free_slots(tenant, date, start_ms, end_ms)

        try:
            times = {slot_to_hhmm(raw, self.tzinfo) for raw in free.get(date, [])}
        except ValueError as exc:
            raise UpstreamError(
                f"Unparseable free slot from provider: {exc}",
                status_code=200, tenant_id=tenant_id, date=date,
            ) from None

        result = sorted(t for t in times if window.allows(t))
        logger.info(
            "Resolved %d bookable time(s) for tenant %s on %s (%d free upstream)",
            len(result), tenant_id, date, len(times),
        )
        return result

    async def next_available(
        self, tenant_id: str, from_date: str, horizon_days: Optional[int] = None
    ) -> Optional[tuple[str, list[str]]]:
        """First configured date on or after ``from_date`` with bookable times."""
        horizon = self._config.booking.horizon_days if horizon_days is None else horizon_days
        if horizon < 1:
            raise ValidationError(
                f"horizon_days must be >= 1, got {horizon}",
                fields=["horizonDays"], tenant_id=tenant_id, date=from_date,
            )
        first = parse_iso_date(from_date)
        last = first + timedelta(days=horizon)
        for day in await self.policy.configured_dates(tenant_id):
            if not first <= parse_iso_date(day) < last:
                continue
            times = await self.resolve(tenant_id, day)
            if times:
                return day, times
        return None

    async def _query_free_slots(
        self, tenant: Tenant, date: str, start_ms: int, end_ms: int
    ) -> FreeSlots:
        gateway_config = self._config.gateway
        attempts = gateway_config.max_retries
        for attempt in range(1, attempts + 1):
            try:
                return await self._gateway.free_slots(
                    calendar_id=tenant.calendar_id,
                    api_token=tenant.api_token,
                    start_ms=start_ms,
                    end_ms=end_ms,
                    timezone=self._config.booking.timezone,
                )
            except UpstreamError as exc:
                exc.tenant_id = tenant.id
                exc.date = date
                if exc.requires_reconfiguration:
                    logger.error(
                        "Provider rejected credentials for tenant %s (status %s)",
                        tenant.id, exc.status_code,
                    )
                    raise
                if not exc.retryable or attempt == attempts:
                    logger.error(
                        "Free/busy query failed for tenant %s on %s: %s",
                        tenant.id, date, exc.message,
                    )
                    raise
                delay = gateway_config.retry_delay_sec * (2 ** (attempt - 1))
                logger.warning(
                    "Free/busy retry %d/%d for tenant %s in %.2fs: %s",
                    attempt, attempts, tenant.id, delay, exc.message,
                )
                await asyncio.sleep(delay)
