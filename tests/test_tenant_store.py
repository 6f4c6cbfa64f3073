"""Tests for TenantStore: CRUD, owned collections, persistence and write isolation."""

import asyncio
import threading

import pytest

from tenantbook.errors import NotFoundError, ValidationError
from tenantbook.schemas.tenant_schema import Appointment
from tenantbook.store.backends import CompressedFileBackend, InMemoryBackend
from tenantbook.store.tenant_store import TenantStore
from tests.conftest import DAY, NEXT_DAY, make_linked_tenant


class TestTenantCrud:
    @pytest.mark.asyncio
    async def test_create_assigns_id_and_empty_collections(self, store):
        tenant = await store.create({"name": "Studio Dana"})
        assert tenant.id
        assert tenant.services == []
        assert tenant.availability_slots == []
        assert tenant.appointments == []

    @pytest.mark.asyncio
    async def test_create_rejects_empty_name(self, store):
        with pytest.raises(ValidationError):
            await store.create({"name": "   "})
        assert await store.list() == []

    @pytest.mark.asyncio
    async def test_create_rejects_caller_supplied_id(self, store):
        with pytest.raises(ValidationError):
            await store.create({"id": "mine", "name": "Studio"})

    @pytest.mark.asyncio
    async def test_update_merges_and_get_reflects_it(self, store):
        tenant = await store.create({"name": "Studio"})
        updated = await store.update(tenant.id, {"bookingMessage": "See you soon"})
        assert updated.booking_message == "See you soon"
        assert updated.name == "Studio"
        assert (await store.get(tenant.id)).booking_message == "See you soon"

    @pytest.mark.asyncio
    async def test_update_unknown_tenant_returns_none(self, store):
        assert await store.update("missing", {"name": "X"}) is None

    @pytest.mark.asyncio
    async def test_update_cannot_change_id(self, store):
        tenant = await store.create({"name": "Studio"})
        with pytest.raises(ValidationError):
            await store.update(tenant.id, {"id": "other"})

    @pytest.mark.asyncio
    async def test_update_rejects_invalid_value(self, store):
        tenant = await store.create({"name": "Studio"})
        with pytest.raises(ValidationError):
            await store.update(tenant.id, {"name": ""})
        assert (await store.get(tenant.id)).name == "Studio"

    @pytest.mark.asyncio
    async def test_delete_reports_existence(self, store):
        tenant = await store.create({"name": "Studio"})
        assert await store.delete(tenant.id) is True
        assert await store.delete(tenant.id) is False
        assert await store.get(tenant.id) is None

    @pytest.mark.asyncio
    async def test_get_returns_a_copy(self, store):
        tenant = await store.create({"name": "Studio"})
        copy = await store.get(tenant.id)
        copy.name = "Changed locally"
        assert (await store.get(tenant.id)).name == "Studio"

    @pytest.mark.asyncio
    async def test_require_unknown_raises(self, store):
        with pytest.raises(NotFoundError):
            await store.require("missing")

    @pytest.mark.asyncio
    async def test_find_by_credentials(self, store):
        tenant = await make_linked_tenant(store)
        found = await store.find_by_credentials("dana", "s3cret")
        assert found.id == tenant.id
        assert await store.find_by_credentials("dana", "wrong") is None


class TestServices:
    @pytest.mark.asyncio
    async def test_ids_are_max_plus_one(self, store):
        tenant = await store.create({"name": "Studio"})
        await store.replace_services(tenant.id, [{"id": 7, "name": "Color", "price": 200}])
        added = await store.add_service(tenant.id, "Cut", 80)
        assert added.id == 8

    @pytest.mark.asyncio
    async def test_first_service_gets_id_one(self, store):
        tenant = await store.create({"name": "Studio"})
        assert (await store.add_service(tenant.id, "Cut", 80)).id == 1

    @pytest.mark.asyncio
    async def test_update_and_delete_service(self, store):
        tenant = await store.create({"name": "Studio"})
        service = await store.add_service(tenant.id, "Cut", 80)
        updated = await store.update_service(tenant.id, service.id, {"price": 95})
        assert updated.price == 95
        await store.delete_service(tenant.id, service.id)
        assert await store.list_services(tenant.id) == []

    @pytest.mark.asyncio
    async def test_delete_unknown_service(self, store):
        tenant = await store.create({"name": "Studio"})
        with pytest.raises(NotFoundError):
            await store.delete_service(tenant.id, 42)

    @pytest.mark.asyncio
    async def test_replace_rejects_duplicate_ids(self, store):
        tenant = await store.create({"name": "Studio"})
        with pytest.raises(ValidationError):
            await store.replace_services(tenant.id, [
                {"id": 1, "name": "Cut", "price": 80},
                {"id": 1, "name": "Color", "price": 200},
            ])


class TestProducts:
    @pytest.mark.asyncio
    async def test_product_lifecycle(self, store):
        tenant = await store.create({"name": "Studio"})
        product = await store.add_product(tenant.id, {"name": "Shampoo", "price": 45, "imageUrl": "s.png"})
        assert product.image_url == "s.png"
        await store.update_product(tenant.id, product.id, {"description": "Argan oil"})
        products = await store.list_products(tenant.id)
        assert products[0].description == "Argan oil"
        await store.delete_product(tenant.id, product.id)
        assert await store.list_products(tenant.id) == []


class TestSlots:
    @pytest.mark.asyncio
    async def test_second_slot_for_same_date_rejected(self, store):
        tenant = await make_linked_tenant(store)
        with pytest.raises(ValidationError):
            await store.add_slot(tenant.id, {"date": DAY, "startTime": "10:00", "endTime": "12:00"})
        assert len(await store.list_slots(tenant.id)) == 1

    @pytest.mark.asyncio
    async def test_invalid_window_not_persisted(self, store):
        tenant = await store.create({"name": "Studio"})
        with pytest.raises(ValidationError):
            await store.add_slot(tenant.id, {"date": DAY, "startTime": "17:00", "endTime": "09:00"})
        assert await store.list_slots(tenant.id) == []

    @pytest.mark.asyncio
    async def test_update_slot_moves_date(self, store):
        tenant = await make_linked_tenant(store)
        slot = (await store.list_slots(tenant.id))[0]
        updated = await store.update_slot(tenant.id, slot.id, {"date": NEXT_DAY})
        assert updated.date == NEXT_DAY
        assert updated.break_start == "13:00"

    @pytest.mark.asyncio
    async def test_replace_slots_rejects_duplicate_dates(self, store):
        tenant = await store.create({"name": "Studio"})
        with pytest.raises(ValidationError):
            await store.replace_slots(tenant.id, [
                {"id": "a", "date": DAY, "startTime": "09:00", "endTime": "12:00"},
                {"id": "b", "date": DAY, "startTime": "13:00", "endTime": "17:00"},
            ])


class TestWriteIsolation:
    @pytest.mark.asyncio
    async def test_concurrent_writes_to_one_tenant_both_survive(self, store):
        tenant = await store.create({"name": "Studio"})
        await asyncio.gather(
            store.update(tenant.id, {"bookingMessage": "Welcome"}),
            store.add_service(tenant.id, "Cut", 80),
        )
        current = await store.require(tenant.id)
        assert current.booking_message == "Welcome"
        assert [s.name for s in current.services] == ["Cut"]

    @pytest.mark.asyncio
    async def test_concurrent_service_adds_get_distinct_ids(self, store):
        tenant = await store.create({"name": "Studio"})
        added = await asyncio.gather(*(store.add_service(tenant.id, f"S{i}", 10) for i in range(5)))
        assert sorted(s.id for s in added) == [1, 2, 3, 4, 5]

    @pytest.mark.asyncio
    async def test_writes_to_other_tenants_are_untouched(self, store):
        first = await store.create({"name": "First"})
        second = await store.create({"name": "Second"})
        await asyncio.gather(
            store.update(first.id, {"font": "Heebo"}),
            store.update(second.id, {"font": "Rubik"}),
        )
        assert (await store.require(first.id)).font == "Heebo"
        assert (await store.require(second.id)).font == "Rubik"

    @pytest.mark.asyncio
    async def test_commit_pending_moves_marker_to_appointments(self, store):
        from tenantbook.schemas.tenant_schema import PendingBooking

        tenant = await store.create({"name": "Studio"})
        marker = PendingBooking(
            id="p1", date=DAY, time="10:00", service="Cut",
            customer_name="Noa", customer_phone="050", price=80, created_at="now",
        )
        await store.add_pending(tenant.id, marker)
        appointment = Appointment(
            id="evt-9", date=DAY, time="10:00", service="Cut",
            customer_name="Noa", customer_phone="050", price=80,
        )
        await store.commit_pending(tenant.id, "p1", appointment)
        assert await store.list_pending(tenant.id) == []
        assert [a.id for a in await store.list_appointments(tenant.id)] == ["evt-9"]


class GatedBackend(InMemoryBackend):
    """Backend whose next save blocks until released, to pause a flush mid-write."""

    def __init__(self) -> None:
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()
        self.gate_next = False

    def save(self, records):
        if self.gate_next:
            self.gate_next = False
            self.entered.set()
            self.release.wait(timeout=5)
        super().save(records)


class TestCancelledWrites:
    @pytest.mark.asyncio
    async def test_cancelled_update_is_not_overwritten(self):
        backend = GatedBackend()
        store = TenantStore(backend)
        tenant = await store.create({"name": "Studio"})

        backend.gate_next = True
        update = asyncio.create_task(store.update(tenant.id, {"bookingMessage": "hello"}))
        await asyncio.to_thread(backend.entered.wait, 5)
        update.cancel()
        follow_up = asyncio.create_task(store.add_service(tenant.id, "Cut", 10))
        await asyncio.sleep(0)
        backend.release.set()

        with pytest.raises(asyncio.CancelledError):
            await update
        await follow_up

        current = await store.require(tenant.id)
        assert current.booking_message == "hello"
        assert [s.name for s in current.services] == ["Cut"]
        persisted = backend.load()[0]
        assert persisted["bookingMessage"] == "hello"
        assert persisted["services"][0]["name"] == "Cut"


class TestCollectionRules:
    @pytest.mark.asyncio
    async def test_update_rejects_duplicate_slot_dates(self, store):
        tenant = await store.create({"name": "Studio"})
        with pytest.raises(ValidationError):
            await store.update(tenant.id, {"availabilitySlots": [
                {"id": "a", "date": DAY, "startTime": "09:00", "endTime": "12:00"},
                {"id": "b", "date": DAY, "startTime": "13:00", "endTime": "17:00"},
            ]})
        assert await store.list_slots(tenant.id) == []

    @pytest.mark.asyncio
    async def test_update_rejects_duplicate_service_ids(self, store):
        tenant = await store.create({"name": "Studio"})
        with pytest.raises(ValidationError):
            await store.update(tenant.id, {"services": [
                {"id": 1, "name": "Cut", "price": 80},
                {"id": 1, "name": "Color", "price": 200},
            ]})
        assert await store.list_services(tenant.id) == []

    @pytest.mark.asyncio
    async def test_update_rejects_duplicate_product_ids(self, store):
        tenant = await store.create({"name": "Studio"})
        with pytest.raises(ValidationError):
            await store.update(tenant.id, {"products": [
                {"id": "p", "name": "Wax", "price": 30},
                {"id": "p", "name": "Gel", "price": 35},
            ]})

    @pytest.mark.asyncio
    async def test_update_accepts_valid_collections(self, store):
        tenant = await store.create({"name": "Studio"})
        updated = await store.update(tenant.id, {
            "services": [{"id": 1, "name": "Cut", "price": 80}],
            "availabilitySlots": [
                {"id": "a", "date": DAY, "startTime": "09:00", "endTime": "12:00"},
                {"id": "b", "date": NEXT_DAY, "startTime": "09:00", "endTime": "12:00"},
            ],
        })
        assert len(updated.availability_slots) == 2


class TestLockLifecycle:
    @pytest.mark.asyncio
    async def test_delete_drops_tenant_lock(self, store):
        tenant = await store.create({"name": "Studio"})
        await store.update(tenant.id, {"font": "Heebo"})
        assert tenant.id in store._locks
        await store.delete(tenant.id)
        assert tenant.id not in store._locks

    @pytest.mark.asyncio
    async def test_unknown_tenant_leaves_no_lock(self, store):
        await store.update("missing", {"font": "Heebo"})
        assert "missing" not in store._locks


class TestPersistence:
    @pytest.mark.asyncio
    async def test_reload_from_compressed_file(self, tmp_path):
        path = tmp_path / "tenants.json.z"
        store = TenantStore(CompressedFileBackend(path))
        tenant = await make_linked_tenant(store, bookingMessage="")
        await store.add_slot(tenant.id, {
            "date": NEXT_DAY, "startTime": "10:00", "endTime": "14:00",
            "breakStart": "", "breakEnd": "",
        })

        reopened = TenantStore(CompressedFileBackend(path))
        loaded = await reopened.require(tenant.id)
        assert loaded.name == "Studio Dana"
        assert loaded.booking_message == ""
        assert loaded.icon is None
        assert [s.name for s in loaded.services] == ["Haircut"]
        slots = {s.date: s for s in loaded.availability_slots}
        assert slots[DAY].break_start == "13:00"
        assert slots[NEXT_DAY].break_start == ""

    @pytest.mark.asyncio
    async def test_missing_file_starts_empty(self, tmp_path):
        store = TenantStore(CompressedFileBackend(tmp_path / "none.json.z"))
        assert await store.list() == []

    @pytest.mark.asyncio
    async def test_persisted_records_use_camel_case(self):
        backend = InMemoryBackend()
        store = TenantStore(backend)
        await make_linked_tenant(store)
        record = backend.load()[0]
        assert record["apiToken"] == "tok-1"
        assert record["availabilitySlots"][0]["startTime"] == "09:00"
        assert "icon" not in record

    @pytest.mark.asyncio
    async def test_delete_is_persisted(self, tmp_path):
        path = tmp_path / "tenants.json.z"
        store = TenantStore(CompressedFileBackend(path))
        tenant = await store.create({"name": "Gone"})
        await store.delete(tenant.id)
        assert await TenantStore(CompressedFileBackend(path)).list() == []
