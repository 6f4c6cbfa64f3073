"""Shared test fixtures and helpers."""

import asyncio
from typing import Optional

import pytest

from tenantbook.config import AppConfig, BookingConfig, GatewayConfig
from tenantbook.schemas.booking_schema import AppointmentCommand
from tenantbook.scheduling.coordinator import BookingCoordinator
from tenantbook.scheduling.resolver import AvailabilityResolver
from tenantbook.store.backends import InMemoryBackend
from tenantbook.store.tenant_store import TenantStore

DAY = "2024-06-10"
NEXT_DAY = "2024-06-11"

TEST_CONFIG = AppConfig(
    gateway=GatewayConfig(max_retries=3, retry_delay_sec=0.0, timeout_sec=2.0),
    booking=BookingConfig(timezone="Asia/Jerusalem", duration_minutes=60, horizon_days=14),
)


def iso(day: str, hhmm: str, offset: str = "+03:00") -> str:
    """Provider-style slot marker; Jerusalem is UTC+3 in June."""
    return f"{day}T{hhmm}:00{offset}"


class FakeGateway:
    """In-process stand-in for the calendar provider."""

    def __init__(
        self,
        free: Optional[dict[str, list[str]]] = None,
        event_id: Optional[str] = "evt-1",
        create_error: Optional[Exception] = None,
        query_errors: Optional[list[Exception]] = None,
    ) -> None:
        self.free = free or {}
        self.event_id = event_id
        self.create_error = create_error
        self.query_errors = list(query_errors or [])
        self.queries: list[dict] = []
        self.commands: list[AppointmentCommand] = []
        self.create_started = asyncio.Event()
        self.create_gate: Optional[asyncio.Event] = None

    async def free_slots(self, calendar_id, api_token, start_ms, end_ms, timezone):
        self.queries.append({
            "calendar_id": calendar_id,
            "api_token": api_token,
            "start_ms": start_ms,
            "end_ms": end_ms,
            "timezone": timezone,
        })
        if self.query_errors:
            raise self.query_errors.pop(0)
        return {day: list(times) for day, times in self.free.items()}

    async def create_appointment(self, command: AppointmentCommand):
        self.commands.append(command)
        self.create_started.set()
        if self.create_gate is not None:
            await self.create_gate.wait()
        if self.create_error is not None:
            raise self.create_error
        return self.event_id


@pytest.fixture
def backend():
    return InMemoryBackend()


@pytest.fixture
def store(backend):
    return TenantStore(backend)


@pytest.fixture
def gateway():
    return FakeGateway(free={DAY: [iso(DAY, t) for t in ("09:00", "10:00", "12:30", "13:30", "16:45")]})


@pytest.fixture
def resolver(store, gateway):
    return AvailabilityResolver(store, gateway, TEST_CONFIG)


@pytest.fixture
def coordinator(store, resolver, gateway):
    return BookingCoordinator(store, resolver, gateway, TEST_CONFIG)


async def make_linked_tenant(store: TenantStore, **overrides):
    """Create a tenant linked to a calendar, with one service and a window on DAY."""
    data = {
        "name": "Studio Dana",
        "username": "dana",
        "password": "s3cret",
        "locationId": "loc-1",
        "calendarId": "cal-1",
        "apiToken": "tok-1",
    }
    data.update(overrides)
    tenant = await store.create(data)
    await store.add_service(tenant.id, "Haircut", 80)
    await store.add_slot(tenant.id, {
        "date": DAY,
        "startTime": "09:00",
        "endTime": "17:00",
        "breakStart": "13:00",
        "breakEnd": "14:00",
    })
    return await store.require(tenant.id)


def booking_request(**overrides) -> dict:
    data = {
        "date": DAY,
        "time": "10:00",
        "service": "Haircut",
        "contactId": "contact-1",
        "customerName": "Noa Levi",
        "customerPhone": "050-123 4567",
    }
    data.update(overrides)
    return data
