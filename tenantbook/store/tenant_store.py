"""
Tenant-keyed repository with per-tenant write serialization.

Every mutation is a full read-modify-write of one tenant record, computed
from the freshest committed state while holding that tenant's lock.
Writes to different tenants proceed concurrently; only the final flush to
the backend is serialized, and it always snapshots the latest committed
records.

Usage:
    store = TenantStore(InMemoryBackend())
    tenant = await store.create({"name": "Studio Dana"})
    await store.update(tenant.id, {"bookingMessage": "See you soon"})
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Callable, Iterable, Optional, TypeVar, Union

from tenantbook.errors import NotFoundError, ValidationError
from tenantbook.scheduling.policy import validate_slot_collection
from tenantbook.schemas.tenant_schema import (
    Appointment,
    AvailabilitySlot,
    PendingBooking,
    Product,
    Service,
    Tenant,
    field_key,
    parse_model,
)
from tenantbook.store.backends import TenantBackend

logger = logging.getLogger(__name__)

T = TypeVar("T")
# A mutation receives the fresh record and returns (field changes, result)
Mutation = Callable[[Tenant], tuple[dict[str, Any], T]]

IMMUTABLE_FIELDS = frozenset({"id"})


def _new_id() -> str:
    return uuid.uuid4().hex


class TenantStore:
    """Process-wide tenant state, loaded at startup and persisted on write."""

    def __init__(self, backend: TenantBackend) -> None:
        self._backend = backend
        self._tenants: dict[str, Tenant] = {}
        for record in backend.load():
            tenant = Tenant.model_validate(record)
            self._tenants[tenant.id] = tenant
        self._locks: dict[str, asyncio.Lock] = {}
        self._flush_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Tenant records
    # ------------------------------------------------------------------

    async def list(self) -> list[Tenant]:
        """All tenants in insertion order."""
        return [t.model_copy(deep=True) for t in self._tenants.values()]

    async def get(self, tenant_id: str) -> Optional[Tenant]:
        tenant = self._tenants.get(tenant_id)
        return tenant.model_copy(deep=True) if tenant else None

    async def require(self, tenant_id: str) -> Tenant:
        """Like ``get`` but raises NotFoundError for unknown ids."""
        tenant = await self.get(tenant_id)
        if tenant is None:
            raise NotFoundError(f"Tenant {tenant_id} not found", tenant_id=tenant_id)
        return tenant

    async def create(self, draft: dict[str, Any]) -> Tenant:
        """Create a tenant with a fresh id and empty owned collections."""
        if any(field_key(Tenant, key) in IMMUTABLE_FIELDS for key in draft):
            raise ValidationError("Tenant id is assigned by the store", fields=["id"])
        name = draft.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("Tenant name must not be empty", fields=["name"])

        tenant_id = _new_id()
        data = {field_key(Tenant, key): value for key, value in draft.items()}
        data.update(
            id=tenant_id,
            services=[],
            products=[],
            availability_slots=[],
            appointments=[],
            pending_bookings=[],
        )
        tenant = parse_model(Tenant, data, tenant_id=tenant_id)

        async with self._lock_for(tenant_id):
            await self._commit(tenant_id, tenant)
        logger.info("Tenant created: %s (%s)", tenant_id, tenant.name)
        return tenant.model_copy(deep=True)

    async def update(self, tenant_id: str, partial: dict[str, Any]) -> Optional[Tenant]:
        """Shallow-merge ``partial`` into the record. Returns None for unknown ids."""
        changes = {field_key(Tenant, key): value for key, value in partial.items()}
        if IMMUTABLE_FIELDS & changes.keys():
            raise ValidationError(
                "Tenant id cannot be changed", fields=["id"], tenant_id=tenant_id
            )
        try:
            tenant, _ = await self._mutate(tenant_id, lambda current: (changes, None))
        except NotFoundError:
            return None
        return tenant

    async def delete(self, tenant_id: str) -> bool:
        """Remove a tenant and everything it owns. Returns whether it existed."""
        async with self._lock_for(tenant_id):
            if tenant_id not in self._tenants:
                return False
            await self._commit(tenant_id, None)
            self._locks.pop(tenant_id, None)
        logger.info("Tenant deleted: %s", tenant_id)
        return True

    async def find_by_credentials(self, username: str, password: str) -> Optional[Tenant]:
        """Return the tenant whose stored credentials match exactly."""
        for tenant in self._tenants.values():
            if tenant.username == username and tenant.password == password:
                return tenant.model_copy(deep=True)
        return None

    # ------------------------------------------------------------------
    # Services
    # ------------------------------------------------------------------

    async def list_services(self, tenant_id: str) -> list[Service]:
        return (await self.require(tenant_id)).services

    async def replace_services(
        self, tenant_id: str, services: Iterable[Union[Service, dict]]
    ) -> list[Service]:
        items = [self._coerce(Service, s, tenant_id) for s in services]
        tenant, _ = await self._mutate(tenant_id, lambda current: ({"services": items}, None))
        return tenant.services

    async def add_service(self, tenant_id: str, name: str, price: float) -> Service:
        """Append a service with id = max existing id + 1."""

        def mutation(current: Tenant):
            next_id = max((s.id for s in current.services), default=0) + 1
            service = parse_model(
                Service, {"id": next_id, "name": name, "price": price}, tenant_id=tenant_id
            )
            return {"services": [*current.services, service]}, service

        _, service = await self._mutate(tenant_id, mutation)
        logger.info("Service %d added for tenant %s: %s", service.id, tenant_id, service.name)
        return service

    async def update_service(self, tenant_id: str, service_id: int, changes: dict[str, Any]) -> Service:
        def mutation(current: Tenant):
            services, updated = _replace_item(
                current.services, service_id, changes, Service, "Service", tenant_id
            )
            return {"services": services}, updated

        _, service = await self._mutate(tenant_id, mutation)
        return service

    async def delete_service(self, tenant_id: str, service_id: int) -> None:
        def mutation(current: Tenant):
            return {"services": _without(current.services, service_id, "Service", tenant_id)}, None

        await self._mutate(tenant_id, mutation)

    # ------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------

    async def list_products(self, tenant_id: str) -> list[Product]:
        return (await self.require(tenant_id)).products

    async def replace_products(
        self, tenant_id: str, products: Iterable[Union[Product, dict]]
    ) -> list[Product]:
        items = [self._coerce(Product, p, tenant_id) for p in products]
        tenant, _ = await self._mutate(tenant_id, lambda current: ({"products": items}, None))
        return tenant.products

    async def add_product(self, tenant_id: str, data: dict[str, Any]) -> Product:
        product = parse_model(Product, {**data, "id": _new_id()}, tenant_id=tenant_id)

        def mutation(current: Tenant):
            return {"products": [*current.products, product]}, product

        await self._mutate(tenant_id, mutation)
        logger.info("Product %s added for tenant %s", product.id, tenant_id)
        return product

    async def update_product(self, tenant_id: str, product_id: str, changes: dict[str, Any]) -> Product:
        def mutation(current: Tenant):
            products, updated = _replace_item(
                current.products, product_id, changes, Product, "Product", tenant_id
            )
            return {"products": products}, updated

        _, product = await self._mutate(tenant_id, mutation)
        return product

    async def delete_product(self, tenant_id: str, product_id: str) -> None:
        def mutation(current: Tenant):
            return {"products": _without(current.products, product_id, "Product", tenant_id)}, None

        await self._mutate(tenant_id, mutation)

    # ------------------------------------------------------------------
    # Availability slots
    # ------------------------------------------------------------------

    async def list_slots(self, tenant_id: str) -> list[AvailabilitySlot]:
        return (await self.require(tenant_id)).availability_slots

    async def replace_slots(
        self, tenant_id: str, slots: Iterable[Union[AvailabilitySlot, dict]]
    ) -> list[AvailabilitySlot]:
        items = [self._coerce(AvailabilitySlot, s, tenant_id) for s in slots]
        tenant, _ = await self._mutate(
            tenant_id, lambda current: ({"availability_slots": items}, None)
        )
        return tenant.availability_slots

    async def add_slot(self, tenant_id: str, data: dict[str, Any]) -> AvailabilitySlot:
        slot = parse_model(AvailabilitySlot, {**data, "id": _new_id()}, tenant_id=tenant_id)

        def mutation(current: Tenant):
            slots = [*current.availability_slots, slot]
            return {"availability_slots": slots}, slot

        await self._mutate(tenant_id, mutation)
        logger.info("Availability set for tenant %s on %s", tenant_id, slot.date)
        return slot

    async def update_slot(self, tenant_id: str, slot_id: str, changes: dict[str, Any]) -> AvailabilitySlot:
        def mutation(current: Tenant):
            slots, updated = _replace_item(
                current.availability_slots, slot_id, changes,
                AvailabilitySlot, "Availability slot", tenant_id,
            )
            return {"availability_slots": slots}, updated

        _, slot = await self._mutate(tenant_id, mutation)
        return slot

    async def delete_slot(self, tenant_id: str, slot_id: str) -> None:
        def mutation(current: Tenant):
            slots = _without(current.availability_slots, slot_id, "Availability slot", tenant_id)
            return {"availability_slots": slots}, None

        await self._mutate(tenant_id, mutation)

    # ------------------------------------------------------------------
    # Appointments and pending-commit markers
    # ------------------------------------------------------------------

    async def list_appointments(self, tenant_id: str) -> list[Appointment]:
        return (await self.require(tenant_id)).appointments

    async def append_appointment(self, tenant_id: str, appointment: Appointment) -> Appointment:
        def mutation(current: Tenant):
            return {"appointments": [*current.appointments, appointment]}, appointment

        await self._mutate(tenant_id, mutation)
        return appointment

    async def list_pending(self, tenant_id: str) -> list[PendingBooking]:
        return (await self.require(tenant_id)).pending_bookings

    async def add_pending(self, tenant_id: str, pending: PendingBooking) -> PendingBooking:
        def mutation(current: Tenant):
            return {"pending_bookings": [*current.pending_bookings, pending]}, pending

        await self._mutate(tenant_id, mutation)
        return pending

    async def mark_pending_confirmed(self, tenant_id: str, pending_id: str, event_id: str) -> PendingBooking:
        """Record the provider event id on a pending marker."""

        def mutation(current: Tenant):
            markers, updated = _replace_item(
                current.pending_bookings, pending_id, {"event_id": event_id},
                PendingBooking, "Pending booking", tenant_id,
            )
            return {"pending_bookings": markers}, updated

        _, marker = await self._mutate(tenant_id, mutation)
        return marker

    async def remove_pending(self, tenant_id: str, pending_id: str) -> None:
        def mutation(current: Tenant):
            markers = _without(current.pending_bookings, pending_id, "Pending booking", tenant_id)
            return {"pending_bookings": markers}, None

        await self._mutate(tenant_id, mutation)

    async def commit_pending(self, tenant_id: str, pending_id: str, appointment: Appointment) -> Appointment:
        """Drop the marker and append the appointment in one write."""

        def mutation(current: Tenant):
            markers = _without(current.pending_bookings, pending_id, "Pending booking", tenant_id)
            return {
                "pending_bookings": markers,
                "appointments": [*current.appointments, appointment],
            }, appointment

        await self._mutate(tenant_id, mutation)
        logger.info(
            "Appointment %s committed for tenant %s on %s at %s",
            appointment.id, tenant_id, appointment.date, appointment.time,
        )
        return appointment

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _lock_for(self, tenant_id: str) -> asyncio.Lock:
        return self._locks.setdefault(tenant_id, asyncio.Lock())

    async def _mutate(self, tenant_id: str, mutation: Mutation) -> tuple[Tenant, Any]:
        """Apply ``mutation`` to the freshest record under the tenant lock."""
        async with self._lock_for(tenant_id):
            current = self._tenants.get(tenant_id)
            if current is None:
                self._locks.pop(tenant_id, None)
                raise NotFoundError(f"Tenant {tenant_id} not found", tenant_id=tenant_id)
            changes, result = mutation(current.model_copy(deep=True))
            data = current.model_dump()
            data.update(changes)
            updated = parse_model(Tenant, data, tenant_id=tenant_id)
            _check_collections(updated)
            await self._commit(tenant_id, updated)
        logger.debug("Tenant %s updated: %s", tenant_id, sorted(changes))
        return updated.model_copy(deep=True), result

    async def _commit(self, tenant_id: str, record: Optional[Tenant]) -> None:
        flush = asyncio.create_task(self._flush(tenant_id, record))
        try:
            await asyncio.shield(flush)
        except asyncio.CancelledError:
            # Keep holding the tenant lock until memory matches the backend
            await flush
            raise

    async def _flush(self, tenant_id: str, record: Optional[Tenant]) -> None:
        async with self._flush_lock:
            staged = dict(self._tenants)
            if record is None:
                staged.pop(tenant_id, None)
            else:
                staged[tenant_id] = record
            snapshot = [t.to_record() for t in staged.values()]
            await asyncio.to_thread(self._backend.save, snapshot)
            self._tenants = staged

    @staticmethod
    def _coerce(model: type[T], value: Union[T, dict], tenant_id: str) -> T:
        if isinstance(value, model):
            return value
        if isinstance(value, dict):
            return parse_model(model, value, tenant_id=tenant_id)
        raise ValidationError(
            f"Expected {model.__name__} or dict, got {type(value).__name__}",
            tenant_id=tenant_id,
        )


def _check_collections(tenant: Tenant) -> None:
    """Collection-level rules every write must keep, whichever path made it."""
    for label, field_name, items in (
        ("Service", "services", tenant.services),
        ("Product", "products", tenant.products),
    ):
        ids = [item.id for item in items]
        if len(ids) != len(set(ids)):
            raise ValidationError(
                f"{label} ids must be unique", fields=[field_name], tenant_id=tenant.id
            )
    validate_slot_collection(tenant.availability_slots, tenant_id=tenant.id)


def _replace_item(items: list, item_id, changes: dict[str, Any], model, label: str, tenant_id: str):
    """Return (new list, updated item) with one item's fields merged."""
    keyed = {field_key(model, key): value for key, value in changes.items()}
    if "id" in keyed and keyed["id"] != item_id:
        raise ValidationError(f"{label} id cannot be changed", fields=["id"], tenant_id=tenant_id)
    result = []
    updated = None
    for item in items:
        if item.id == item_id:
            updated = parse_model(model, {**item.model_dump(), **keyed}, tenant_id=tenant_id)
            result.append(updated)
        else:
            result.append(item)
    if updated is None:
        raise NotFoundError(f"{label} {item_id} not found", tenant_id=tenant_id)
    return result, updated


def _without(items: list, item_id, label: str, tenant_id: str) -> list:
    remaining = [item for item in items if item.id != item_id]
    if len(remaining) == len(items):
        raise NotFoundError(f"{label} {item_id} not found", tenant_id=tenant_id)
    return remaining
