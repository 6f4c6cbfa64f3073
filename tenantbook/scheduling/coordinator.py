"""
Booking commit: re-validate, reserve upstream, record locally, exactly once.

Attempts for the same tenant and date are serialized, so two customers
racing for one slot cannot both pass validation. Availability is always
recomputed at commit time; a client-side slot list is never trusted.

Once the upstream create call has been issued the rest of the attempt
runs in its own task. A caller that gives up after that point stops
waiting, but the response is still processed and the appointment is
still committed (or the pending marker cleaned up).

The create call is never retried: a retry could create a duplicate
event with the provider.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING, Optional, Union

from tenantbook.config import AppConfig, settings
from tenantbook.errors import (
    ConfigurationError,
    NotFoundError,
    SlotUnavailableError,
    TenantBookError,
    UpstreamError,
)
from tenantbook.gateway.freebusy import FreeBusyGateway
from tenantbook.logging_context import bind_request, get_request_logger
from tenantbook.scheduling.booking_state import BookingAttempt, BookingStatus
from tenantbook.scheduling.resolver import missing_linkage
from tenantbook.schemas.booking_schema import AppointmentCommand, BookingRequest
from tenantbook.schemas.tenant_schema import (
    Appointment,
    PendingBooking,
    Service,
    Tenant,
    parse_model,
)
from tenantbook.utils import combine, hhmm_to_minutes, utc_now_iso

if TYPE_CHECKING:
    from tenantbook.scheduling.resolver import AvailabilityResolver
    from tenantbook.store.tenant_store import TenantStore

logger = get_request_logger(__name__)

BOOKING_LINKAGE = (
    ("api_token", "apiToken"),
    ("calendar_id", "calendarId"),
    ("location_id", "locationId"),
)


@dataclass
class ReconcileReport:
    """Outcome of replaying pending-commit markers."""

    committed: list[Appointment] = field(default_factory=list)
    unresolved: list[PendingBooking] = field(default_factory=list)


class BookingCoordinator:
    """Commits a customer's slot selection against the provider and the store."""

    def __init__(
        self,
        store: TenantStore,
        resolver: AvailabilityResolver,
        gateway: FreeBusyGateway,
        config: AppConfig = settings,
    ) -> None:
        self._store = store
        self._resolver = resolver
        self._gateway = gateway
        self._config = config
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}
        # Holders plus waiters per lock; a lock is dropped when nobody uses it
        self._lock_users: dict[tuple[str, str], int] = {}
        self._inflight: set[asyncio.Task] = set()

    @property
    def duration(self) -> timedelta:
        return timedelta(minutes=self._config.booking.duration_minutes)

    async def book(
        self,
        tenant_id: str,
        request: Union[BookingRequest, dict],
        attempt: Optional[BookingAttempt] = None,
    ) -> Appointment:
        """
        Validate, reserve and commit one booking.

        Pass ``attempt`` to observe the state machine; it ends COMMITTED on
        success and FAILED otherwise.

        Raises:
            ValidationError: malformed request.
            NotFoundError: unknown tenant or service.
            ConfigurationError: tenant is not linked to a calendar/location.
            SlotUnavailableError: the time is no longer bookable.
            UpstreamError: the provider query or create call failed.
        """
        attempt = attempt or BookingAttempt()
        bind_request(attempt.request_id, tenant_id)
        handed_off = False
        try:
            if not isinstance(request, BookingRequest):
                request = parse_model(BookingRequest, request, tenant_id=tenant_id)
            attempt.transition(BookingStatus.VALIDATING)

            key = (tenant_id, request.date)
            await self._acquire(key)
            try:
                tenant, service = await self._validate(tenant_id, request)
                attempt.transition(BookingStatus.RESERVING)
                task = asyncio.create_task(
                    self._reserve_and_commit(tenant, service, request, attempt)
                )
                handed_off = True
            finally:
                if not handed_off:
                    self._release(key)

            # The task owns the lock from here on
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)
            task.add_done_callback(lambda _: self._release(key))
            return await asyncio.shield(task)
        except TenantBookError as exc:
            attempt.fail(exc)
            raise
        except asyncio.CancelledError as exc:
            if not handed_off:
                attempt.fail(exc)
                logger.info("Booking %s abandoned before reserving", attempt.request_id)
            else:
                logger.info(
                    "Caller stopped waiting on booking %s; commit continues",
                    attempt.request_id,
                )
            raise

    async def reconcile(self, tenant_id: str) -> ReconcileReport:
        """Commit markers whose upstream event was confirmed; report the rest."""
        report = ReconcileReport()
        for marker in await self._store.list_pending(tenant_id):
            key = (tenant_id, marker.date)
            await self._acquire(key)
            try:
                current = {m.id: m for m in await self._store.list_pending(tenant_id)}.get(marker.id)
                if current is None:
                    continue
                if current.event_id is None:
                    report.unresolved.append(current)
                    continue
                appointment = _appointment_from(current, current.event_id)
                await self._store.commit_pending(tenant_id, current.id, appointment)
                report.committed.append(appointment)
            finally:
                self._release(key)
        if report.committed or report.unresolved:
            logger.warning(
                "Reconciled tenant %s: %d committed, %d unresolved",
                tenant_id, len(report.committed), len(report.unresolved),
            )
        return report

    async def appointments(self, tenant_id: str) -> list[Appointment]:
        """Local appointment history after replaying confirmed markers."""
        await self.reconcile(tenant_id)
        return await self._store.list_appointments(tenant_id)

    async def discard_pending(self, tenant_id: str, pending_id: str) -> None:
        """Drop an unresolved marker once the provider side has been checked by hand."""
        await self._store.remove_pending(tenant_id, pending_id)
        logger.info("Pending booking %s discarded for tenant %s", pending_id, tenant_id)

    async def wait_inflight(self) -> None:
        """Wait for shielded commits whose callers have gone away."""
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)

    # ------------------------------------------------------------------

    async def _acquire(self, key: tuple[str, str]) -> None:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            await lock.acquire()
        except asyncio.CancelledError:
            self._forget(key)
            raise

    def _release(self, key: tuple[str, str]) -> None:
        self._locks[key].release()
        self._forget(key)

    def _forget(self, key: tuple[str, str]) -> None:
        users = self._lock_users[key] - 1
        if users:
            self._lock_users[key] = users
        else:
            del self._lock_users[key]
            del self._locks[key]

    async def _validate(self, tenant_id: str, request: BookingRequest) -> tuple[Tenant, Service]:
        tenant = await self._store.require(tenant_id)
        missing = missing_linkage(tenant, BOOKING_LINKAGE)
        if missing:
            raise ConfigurationError(
                f"Tenant {tenant_id} is missing {', '.join(missing)}; "
                "complete the calendar settings before taking bookings",
                missing=missing, tenant_id=tenant_id, date=request.date,
            )

        service = next((s for s in tenant.services if s.name == request.service.strip()), None)
        if service is None:
            raise NotFoundError(
                f"Service {request.service!r} is not offered by tenant {tenant_id}",
                tenant_id=tenant_id, date=request.date,
            )

        times = await self._resolver.resolve(tenant_id, request.date)
        if request.time not in times:
            raise SlotUnavailableError(
                f"{request.time} on {request.date} is no longer available, please pick another time",
                time=request.time, tenant_id=tenant_id, date=request.date,
            )

        fresh = await self._store.require(tenant_id)
        clash = self._find_overlap(fresh, request.date, request.time)
        if clash is not None:
            raise SlotUnavailableError(
                f"{request.time} on {request.date} overlaps an existing appointment at {clash}",
                time=request.time, tenant_id=tenant_id, date=request.date,
            )
        return fresh, service

    def _find_overlap(self, tenant: Tenant, date: str, time: str) -> Optional[str]:
        length = self._config.booking.duration_minutes
        requested = hhmm_to_minutes(time)
        taken = [a.time for a in tenant.appointments if a.date == date]
        taken += [p.time for p in tenant.pending_bookings if p.date == date and p.event_id]
        for existing in taken:
            if abs(hhmm_to_minutes(existing) - requested) < length:
                return existing
        return None

    async def _reserve_and_commit(
        self,
        tenant: Tenant,
        service: Service,
        request: BookingRequest,
        attempt: BookingAttempt,
    ) -> Appointment:
        bind_request(attempt.request_id, tenant.id)
        marker = PendingBooking(
            id=uuid.uuid4().hex,
            date=request.date,
            time=request.time,
            service=service.name,
            customer_name=request.customer_name,
            customer_phone=request.customer_phone,
            price=service.price,
            created_at=utc_now_iso(),
        )
        try:
            await self._store.add_pending(tenant.id, marker)
        except Exception as exc:
            attempt.fail(exc)
            raise

        start = combine(request.date, request.time, self._resolver.tzinfo)
        command = AppointmentCommand(
            calendar_id=tenant.calendar_id,
            location_id=tenant.location_id,
            api_token=tenant.api_token,
            contact_id=request.contact_id,
            start_time=start.isoformat(),
            end_time=(start + self.duration).isoformat(),
            title=service.name,
        )
        try:
            event_id = await self._gateway.create_appointment(command)
        except UpstreamError as exc:
            exc.tenant_id = tenant.id
            exc.date = request.date
            logger.error(
                "Provider refused booking %s for tenant %s (status %s): %s",
                attempt.request_id, tenant.id, exc.status_code, exc.body or exc.message,
            )
            attempt.fail(exc)
            await self._store.remove_pending(tenant.id, marker.id)
            raise

        appointment = _appointment_from(marker, event_id or uuid.uuid4().hex)
        try:
            await self._store.mark_pending_confirmed(tenant.id, marker.id, appointment.id)
            await self._store.commit_pending(tenant.id, marker.id, appointment)
        except Exception as exc:
            logger.error(
                "Booking %s confirmed upstream as %s but local commit failed: %s",
                attempt.request_id, appointment.id, exc,
            )
            attempt.fail(exc)
            raise

        attempt.transition(BookingStatus.COMMITTED)
        logger.info(
            "Booking %s committed: %s %s %s for %s",
            attempt.request_id, appointment.id, appointment.date,
            appointment.time, appointment.customer_name,
        )
        return appointment


def _appointment_from(marker: PendingBooking, appointment_id: str) -> Appointment:
    return Appointment(
        id=appointment_id,
        date=marker.date,
        time=marker.time,
        service=marker.service,
        customer_name=marker.customer_name,
        customer_phone=marker.customer_phone,
        price=marker.price,
    )
