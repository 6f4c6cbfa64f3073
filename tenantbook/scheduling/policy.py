"""
Per-tenant work windows: validation on write, lookup on read.

A tenant configures at most one AvailabilitySlot per date. The slot's
window and break are checked when the slot model is built; this module
adds the collection-level rule (unique dates) and the read-side lookup
used by the resolver.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable, Optional

from tenantbook.errors import ValidationError
from tenantbook.schemas.tenant_schema import AvailabilitySlot

if TYPE_CHECKING:
    from tenantbook.store.tenant_store import TenantStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WorkWindow:
    """Configured hours for one date. Times are ``HH:MM`` strings."""

    start: str
    end: str
    break_start: Optional[str] = None
    break_end: Optional[str] = None

    @classmethod
    def from_slot(cls, slot: AvailabilitySlot) -> WorkWindow:
        if slot.has_break:
            return cls(slot.start_time, slot.end_time, slot.break_start, slot.break_end)
        return cls(slot.start_time, slot.end_time)

    @property
    def has_break(self) -> bool:
        return self.break_start is not None and self.break_end is not None

    def allows(self, time: str) -> bool:
        """True if ``time`` falls in [start, end) and outside [break_start, break_end)."""
        if not self.start <= time < self.end:
            return False
        if self.has_break and self.break_start <= time < self.break_end:
            return False
        return True


def validate_slot_collection(slots: Iterable[AvailabilitySlot], tenant_id: Optional[str] = None) -> None:
    """Reject collections that configure the same date twice."""
    counts = Counter(slot.date for slot in slots)
    duplicates = sorted(day for day, count in counts.items() if count > 1)
    if duplicates:
        raise ValidationError(
            f"Only one availability slot per date is allowed; duplicated: {', '.join(duplicates)}",
            fields=["availabilitySlots"],
            tenant_id=tenant_id,
            date=duplicates[0],
        )


class AvailabilityPolicy:
    """Answers "what are tenant T's working hours on date D?"."""

    def __init__(self, store: TenantStore) -> None:
        self._store = store

    async def window_for(self, tenant_id: str, date: str) -> Optional[WorkWindow]:
        tenant = await self._store.require(tenant_id)
        return self.window_in(tenant.availability_slots, date)

    @staticmethod
    def window_in(slots: Iterable[AvailabilitySlot], date: str) -> Optional[WorkWindow]:
        for slot in slots:
            if slot.date == date:
                return WorkWindow.from_slot(slot)
        return None

    async def configured_dates(self, tenant_id: str) -> list[str]:
        """All dates with a window, ascending."""
        tenant = await self._store.require(tenant_id)
        return sorted(slot.date for slot in tenant.availability_slots)
