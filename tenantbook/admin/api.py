"""
Administrative CRUD surface for tenants and their catalogs.

Thin by intent: every call goes straight to TenantStore, turning a missing
tenant into NotFoundError and invalid input into ValidationError. Slot
writes pass through the availability policy checks inside the store, so
an inverted window, a stray break or a second slot for the same date is
rejected before anything is persisted.
"""

import logging
from datetime import datetime
from typing import Any, Iterable, Optional, Union

from tenantbook.admin.reports import AppointmentStats, compute_stats, split_by_time
from tenantbook.config import AppConfig, settings
from tenantbook.errors import NotFoundError
from tenantbook.scheduling.policy import AvailabilityPolicy, WorkWindow
from tenantbook.schemas.tenant_schema import (
    Appointment,
    AvailabilitySlot,
    Product,
    Service,
    Tenant,
)
from tenantbook.store.tenant_store import TenantStore

logger = logging.getLogger(__name__)


class TenantAdminAPI:
    """CRUD for tenants, services, availability slots and products."""

    def __init__(self, store: TenantStore, config: AppConfig = settings) -> None:
        self._store = store
        self._config = config
        self.policy = AvailabilityPolicy(store)

    # --- Tenants ---

    async def list_tenants(self) -> list[Tenant]:
        return await self._store.list()

    async def get_tenant(self, tenant_id: str) -> Tenant:
        return await self._store.require(tenant_id)

    async def create_tenant(self, data: dict[str, Any]) -> Tenant:
        return await self._store.create(data)

    async def update_tenant(self, tenant_id: str, changes: dict[str, Any]) -> Tenant:
        tenant = await self._store.update(tenant_id, changes)
        if tenant is None:
            raise NotFoundError(f"Tenant {tenant_id} not found", tenant_id=tenant_id)
        return tenant

    async def delete_tenant(self, tenant_id: str) -> None:
        if not await self._store.delete(tenant_id):
            raise NotFoundError(f"Tenant {tenant_id} not found", tenant_id=tenant_id)

    async def configure_calendar(
        self,
        tenant_id: str,
        location_id: Optional[str] = None,
        calendar_id: Optional[str] = None,
        api_token: Optional[str] = None,
    ) -> Tenant:
        """Set the provider linkage fields that were passed; others are left alone."""
        changes = {
            key: value
            for key, value in (
                ("locationId", location_id),
                ("calendarId", calendar_id),
                ("apiToken", api_token),
            )
            if value is not None
        }
        tenant = await self.update_tenant(tenant_id, changes)
        logger.info("Calendar linkage updated for tenant %s: %s", tenant_id, sorted(changes))
        return tenant

    async def authenticate(self, username: str, password: str) -> Optional[Tenant]:
        tenant = await self._store.find_by_credentials(username, password)
        if tenant is None:
            logger.info("Login rejected for username %r", username)
        return tenant

    # --- Services ---

    async def list_services(self, tenant_id: str) -> list[Service]:
        return await self._store.list_services(tenant_id)

    async def add_service(self, tenant_id: str, name: str, price: float) -> Service:
        return await self._store.add_service(tenant_id, name, price)

    async def update_service(self, tenant_id: str, service_id: int, changes: dict[str, Any]) -> Service:
        return await self._store.update_service(tenant_id, service_id, changes)

    async def remove_service(self, tenant_id: str, service_id: int) -> None:
        await self._store.delete_service(tenant_id, service_id)

    async def replace_services(
        self, tenant_id: str, services: Iterable[Union[Service, dict]]
    ) -> list[Service]:
        return await self._store.replace_services(tenant_id, services)

    # --- Availability ---

    async def list_slots(self, tenant_id: str) -> list[AvailabilitySlot]:
        return await self._store.list_slots(tenant_id)

    async def add_slot(self, tenant_id: str, data: dict[str, Any]) -> AvailabilitySlot:
        return await self._store.add_slot(tenant_id, data)

    async def update_slot(self, tenant_id: str, slot_id: str, changes: dict[str, Any]) -> AvailabilitySlot:
        return await self._store.update_slot(tenant_id, slot_id, changes)

    async def remove_slot(self, tenant_id: str, slot_id: str) -> None:
        await self._store.delete_slot(tenant_id, slot_id)

    async def replace_slots(
        self, tenant_id: str, slots: Iterable[Union[AvailabilitySlot, dict]]
    ) -> list[AvailabilitySlot]:
        return await self._store.replace_slots(tenant_id, slots)

    async def window_for(self, tenant_id: str, date: str) -> Optional[WorkWindow]:
        return await self.policy.window_for(tenant_id, date)

    # --- Products ---

    async def list_products(self, tenant_id: str) -> list[Product]:
        return await self._store.list_products(tenant_id)

    async def add_product(self, tenant_id: str, data: dict[str, Any]) -> Product:
        return await self._store.add_product(tenant_id, data)

    async def update_product(self, tenant_id: str, product_id: str, changes: dict[str, Any]) -> Product:
        return await self._store.update_product(tenant_id, product_id, changes)

    async def remove_product(self, tenant_id: str, product_id: str) -> None:
        await self._store.delete_product(tenant_id, product_id)

    async def replace_products(
        self, tenant_id: str, products: Iterable[Union[Product, dict]]
    ) -> list[Product]:
        return await self._store.replace_products(tenant_id, products)

    # --- Appointment history ---

    async def upcoming_appointments(
        self, tenant_id: str, now: Optional[datetime] = None
    ) -> list[Appointment]:
        upcoming, _ = await self._split(tenant_id, now)
        return upcoming

    async def past_appointments(
        self, tenant_id: str, now: Optional[datetime] = None
    ) -> list[Appointment]:
        _, past = await self._split(tenant_id, now)
        return past

    async def statistics(self, tenant_id: str, start: str, end: str) -> AppointmentStats:
        appointments = await self._store.list_appointments(tenant_id)
        return compute_stats(appointments, start, end)

    async def _split(self, tenant_id: str, now: Optional[datetime]):
        tz = self._config.booking.tzinfo
        appointments = await self._store.list_appointments(tenant_id)
        return split_by_time(appointments, now or datetime.now(tz), tz)
