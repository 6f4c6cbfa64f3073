"""Booking request and upstream command models."""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from tenantbook.utils import is_hhmm, normalize_phone, parse_iso_date


class BookingRequest(BaseModel):
    """A customer's slot selection as submitted for commit."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    date: str
    time: str
    service: str = Field(min_length=1)
    contact_id: str = Field(min_length=1)
    customer_name: str = Field(min_length=1)
    customer_phone: str = Field(min_length=1)

    @field_validator("date")
    @classmethod
    def _check_date(cls, value: str) -> str:
        parse_iso_date(value)
        return value

    @field_validator("time")
    @classmethod
    def _check_time(cls, value: str) -> str:
        if not is_hhmm(value):
            raise ValueError(f"expected HH:MM, got {value!r}")
        return value

    @field_validator("customer_phone")
    @classmethod
    def _normalize_phone(cls, value: str) -> str:
        return normalize_phone(value)


class AppointmentCommand(BaseModel):
    """Payload for the provider's create-appointment call."""

    calendar_id: str
    location_id: str
    api_token: str
    contact_id: str
    start_time: str
    end_time: str
    title: str
