"""
External calendar provider: free/busy query and appointment creation.

``FreeBusyGateway`` is the contract the core consumes. The HTTP
implementation talks to the LeadConnector calendars API with the tenant's
own token on every call; there is no process-wide credential.

Every call is bounded by ``GatewayConfig.timeout_sec``. Timeouts, transport
errors, non-2xx answers and undecodable bodies all surface as
``UpstreamError``; nothing here retries.
"""

import logging
from typing import Any, Optional, Protocol

import httpx

from tenantbook.config import GatewayConfig, settings
from tenantbook.errors import UpstreamError
from tenantbook.schemas.booking_schema import AppointmentCommand

logger = logging.getLogger(__name__)

# Free slots per date string, each an ISO-8601 start timestamp
FreeSlots = dict[str, list[str]]


class FreeBusyGateway(Protocol):
    async def free_slots(
        self,
        calendar_id: str,
        api_token: str,
        start_ms: int,
        end_ms: int,
        timezone: str,
    ) -> FreeSlots:
        """Free-interval starts for the half-open range [start_ms, end_ms)."""
        ...

    async def create_appointment(self, command: AppointmentCommand) -> Optional[str]:
        """Create the event; returns the provider's id when it reports one."""
        ...


class LeadConnectorGateway:
    """HTTP client for the LeadConnector calendars API."""

    def __init__(
        self,
        config: GatewayConfig = settings.gateway,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.config = config
        self._client = client

    def _headers(self, api_token: str) -> dict[str, str]:
        return {
            "Accept": "application/json",
            "Authorization": f"Bearer {api_token}",
            "Version": self.config.api_version,
        }

    async def free_slots(
        self,
        calendar_id: str,
        api_token: str,
        start_ms: int,
        end_ms: int,
        timezone: str,
    ) -> FreeSlots:
        data = await self._request(
            "GET",
            f"/calendars/{calendar_id}/free-slots",
            api_token,
            params={"startDate": start_ms, "endDate": end_ms, "timezone": timezone},
        )
        if not isinstance(data, dict):
            raise UpstreamError(
                f"Unexpected free-slots payload: {type(data).__name__}", status_code=200
            )

        slots: FreeSlots = {}
        for key, value in data.items():
            # Non-date keys such as traceId carry no slots
            if isinstance(value, dict) and isinstance(value.get("slots"), list):
                slots[key] = [str(s) for s in value["slots"]]
        logger.debug(
            "Free slots for calendar %s: %s",
            calendar_id, {day: len(times) for day, times in slots.items()},
        )
        return slots

    async def create_appointment(self, command: AppointmentCommand) -> Optional[str]:
        payload = {
            "calendarId": command.calendar_id,
            "locationId": command.location_id,
            "contactId": command.contact_id,
            "startTime": command.start_time,
            "endTime": command.end_time,
            "title": command.title,
            "meetingLocationType": "default",
            "appointmentStatus": "new",
        }
        data = await self._request(
            "POST", "/calendars/events/appointments", command.api_token, json=payload
        )
        event_id = data.get("id") if isinstance(data, dict) else None
        logger.info("Provider appointment created: %s", event_id or "<no id>")
        return str(event_id) if event_id else None

    async def _request(self, method: str, path: str, api_token: str, **kwargs: Any) -> Any:
        url = self.config.base_url.rstrip("/") + path
        headers = self._headers(api_token)
        timeout = httpx.Timeout(self.config.timeout_sec)
        try:
            if self._client is not None:
                response = await self._client.request(
                    method, url, headers=headers, timeout=timeout, **kwargs
                )
            else:
                async with httpx.AsyncClient(timeout=timeout) as client:
                    response = await client.request(method, url, headers=headers, **kwargs)
        except httpx.TimeoutException:
            logger.warning("%s %s timed out after %.1fs", method, path, self.config.timeout_sec)
            raise UpstreamError(
                f"Calendar provider timed out after {self.config.timeout_sec}s"
            ) from None
        except httpx.HTTPError as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            raise UpstreamError(f"Calendar provider unreachable: {exc}") from exc

        if not response.is_success:
            logger.error("%s %s returned %d: %s", method, path, response.status_code, response.text)
            raise UpstreamError(
                f"Calendar provider returned {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )
        try:
            return response.json()
        except ValueError:
            raise UpstreamError(
                "Calendar provider returned a non-JSON body",
                status_code=response.status_code,
                body=response.text,
            ) from None
