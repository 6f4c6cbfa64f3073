"""Tests for work windows and the per-date policy lookup."""

import pytest

from tenantbook.errors import NotFoundError
from tenantbook.scheduling.policy import AvailabilityPolicy, WorkWindow
from tests.conftest import DAY, NEXT_DAY, make_linked_tenant


class TestWorkWindow:
    def test_start_is_inclusive_end_is_exclusive(self):
        window = WorkWindow("09:00", "17:00")
        assert window.allows("09:00")
        assert window.allows("16:59")
        assert not window.allows("17:00")
        assert not window.allows("08:59")

    def test_break_is_half_open(self):
        window = WorkWindow("09:00", "17:00", "13:00", "14:00")
        assert window.allows("12:59")
        assert not window.allows("13:00")
        assert not window.allows("13:30")
        assert window.allows("14:00")

    def test_window_without_break(self):
        window = WorkWindow("09:00", "17:00")
        assert not window.has_break
        assert window.allows("13:30")


class TestAvailabilityPolicy:
    @pytest.mark.asyncio
    async def test_window_for_configured_date(self, store):
        tenant = await make_linked_tenant(store)
        window = await AvailabilityPolicy(store).window_for(tenant.id, DAY)
        assert window == WorkWindow("09:00", "17:00", "13:00", "14:00")

    @pytest.mark.asyncio
    async def test_no_window_for_unconfigured_date(self, store):
        tenant = await make_linked_tenant(store)
        assert await AvailabilityPolicy(store).window_for(tenant.id, NEXT_DAY) is None

    @pytest.mark.asyncio
    async def test_empty_break_yields_plain_window(self, store):
        tenant = await store.create({"name": "Studio"})
        await store.add_slot(tenant.id, {
            "date": DAY, "startTime": "10:00", "endTime": "12:00", "breakStart": "", "breakEnd": "",
        })
        window = await AvailabilityPolicy(store).window_for(tenant.id, DAY)
        assert window == WorkWindow("10:00", "12:00")

    @pytest.mark.asyncio
    async def test_unknown_tenant(self, store):
        with pytest.raises(NotFoundError):
            await AvailabilityPolicy(store).window_for("missing", DAY)

    @pytest.mark.asyncio
    async def test_configured_dates_sorted(self, store):
        tenant = await store.create({"name": "Studio"})
        for day in (NEXT_DAY, DAY):
            await store.add_slot(tenant.id, {"date": day, "startTime": "09:00", "endTime": "12:00"})
        assert await AvailabilityPolicy(store).configured_dates(tenant.id) == [DAY, NEXT_DAY]
