"""
Appointment history views and per-tenant statistics.

Pure functions over a tenant's appointment list: split into upcoming and
past around a reference instant, and aggregate counts and revenue over an
inclusive date range.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional
from zoneinfo import ZoneInfo

from tenantbook.errors import ValidationError
from tenantbook.schemas.tenant_schema import Appointment
from tenantbook.utils import combine, parse_iso_date

logger = logging.getLogger(__name__)


@dataclass
class AppointmentStats:
    """Aggregates for one tenant over [start, end]."""

    start: str
    end: str
    total: int = 0
    revenue: float = 0.0
    by_service: dict[str, int] = field(default_factory=dict)

    @property
    def busiest_service(self) -> Optional[str]:
        if not self.by_service:
            return None
        return max(self.by_service.items(), key=lambda item: (item[1], item[0]))[0]


def _sort_key(appointment: Appointment) -> tuple[str, str]:
    return appointment.date, appointment.time


def split_by_time(
    appointments: Iterable[Appointment], now: datetime, tz: ZoneInfo
) -> tuple[list[Appointment], list[Appointment]]:
    """Return (upcoming ascending, past most-recent-first) relative to ``now``."""
    upcoming: list[Appointment] = []
    past: list[Appointment] = []
    for appointment in appointments:
        starts_at = combine(appointment.date, appointment.time, tz)
        (upcoming if starts_at >= now else past).append(appointment)
    upcoming.sort(key=_sort_key)
    past.sort(key=_sort_key, reverse=True)
    return upcoming, past


def compute_stats(appointments: Iterable[Appointment], start: str, end: str) -> AppointmentStats:
    """Count, per-service count and revenue for appointments dated in [start, end]."""
    try:
        first, last = parse_iso_date(start), parse_iso_date(end)
    except ValueError:
        raise ValidationError(
            f"Invalid date range {start!r}..{end!r}", fields=["start", "end"]
        ) from None
    if first > last:
        raise ValidationError(f"Range start {start} is after end {end}", fields=["start", "end"])

    in_range = [a for a in appointments if first <= parse_iso_date(a.date) <= last]
    stats = AppointmentStats(start=start, end=end, total=len(in_range))
    stats.by_service = dict(Counter(a.service for a in in_range))
    stats.revenue = round(sum(a.price or 0.0 for a in in_range), 2)
    logger.debug("Stats %s..%s: %d appointment(s)", start, end, stats.total)
    return stats
