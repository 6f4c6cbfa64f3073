"""Tenant record and its owned collections.

Field names are snake_case in Python and camelCase on disk and over the
admin boundary (``startTime``, ``apiToken`` ...). Optional fields left
unset are omitted when serialized, so an absent value and an empty string
survive a store round-trip as different things.
"""

from typing import Any, Optional, TypeVar

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from tenantbook.errors import ValidationError
from tenantbook.utils import is_hhmm, parse_iso_date

ModelT = TypeVar("ModelT", bound=BaseModel)


class _Record(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        validate_assignment=True,
    )

    def to_record(self) -> dict[str, Any]:
        """Serialize to the persisted (camelCase, absent-not-null) form."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ThemeColors(_Record):
    primary: str
    secondary: str
    accent: str
    text: str


class Service(_Record):
    """A bookable service with its list price."""

    id: int
    name: str = Field(min_length=1)
    price: float = Field(ge=0)


class Product(_Record):
    """A store item sold by the tenant."""

    id: str
    name: str = Field(min_length=1)
    price: float = Field(ge=0)
    description: str = ""
    image_url: str = ""


class AvailabilitySlot(_Record):
    """The working window for one date, with an optional break.

    Empty-string break bounds mean "no break" and are kept as-is.
    """

    id: str
    date: str
    start_time: str
    end_time: str
    break_start: Optional[str] = None
    break_end: Optional[str] = None

    @field_validator("date")
    @classmethod
    def _check_date(cls, value: str) -> str:
        parse_iso_date(value)
        return value

    @field_validator("start_time", "end_time")
    @classmethod
    def _check_time(cls, value: str) -> str:
        if not is_hhmm(value):
            raise ValueError(f"expected HH:MM, got {value!r}")
        return value

    @field_validator("break_start", "break_end")
    @classmethod
    def _check_break_time(cls, value: Optional[str]) -> Optional[str]:
        if value and not is_hhmm(value):
            raise ValueError(f"expected HH:MM, got {value!r}")
        return value

    @property
    def has_break(self) -> bool:
        return bool(self.break_start) and bool(self.break_end)

    @model_validator(mode="after")
    def _check_window(self) -> "AvailabilitySlot":
        # HH:MM strings compare in time order
        if not self.start_time < self.end_time:
            raise ValueError(
                f"startTime {self.start_time} must be before endTime {self.end_time}"
            )
        if bool(self.break_start) != bool(self.break_end):
            raise ValueError("breakStart and breakEnd must be set together")
        if self.has_break and not (
            self.start_time <= self.break_start < self.break_end <= self.end_time
        ):
            raise ValueError(
                f"break {self.break_start}-{self.break_end} must lie inside "
                f"{self.start_time}-{self.end_time}"
            )
        return self


class Appointment(_Record):
    """A committed booking. ``service`` and ``price`` are snapshots."""

    id: str
    date: str
    time: str
    service: str
    customer_name: str
    customer_phone: str
    price: Optional[float] = None


class PendingBooking(_Record):
    """Marker written before the upstream create call.

    ``event_id`` is filled once the provider confirms, so a marker that
    still exists with an event id is a booking awaiting local commit.
    """

    id: str
    date: str
    time: str
    service: str
    customer_name: str
    customer_phone: str
    price: Optional[float] = None
    created_at: str
    event_id: Optional[str] = None


class Tenant(_Record):
    """One onboarded business and everything it owns."""

    id: str
    name: str = Field(min_length=1)
    owner_id: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    location_id: Optional[str] = None
    calendar_id: Optional[str] = None
    api_token: Optional[str] = None
    icon: Optional[str] = None
    font: Optional[str] = None
    colors: Optional[ThemeColors] = None
    booking_message: Optional[str] = None
    is_store_enabled: Optional[bool] = None
    services: list[Service] = Field(default_factory=list)
    products: list[Product] = Field(default_factory=list)
    availability_slots: list[AvailabilitySlot] = Field(default_factory=list)
    appointments: list[Appointment] = Field(default_factory=list)
    pending_bookings: list[PendingBooking] = Field(default_factory=list)


def field_key(model: type[BaseModel], name: str) -> str:
    """Map a camelCase or snake_case key to the model's Python field name."""
    if name in model.model_fields:
        return name
    for field_name, info in model.model_fields.items():
        if info.alias == name:
            return field_name
    raise ValidationError(f"Unknown field '{name}' for {model.__name__}", fields=[name])


def parse_model(model: type[ModelT], data: dict[str, Any], **context) -> ModelT:
    """Validate ``data`` into ``model``, raising the domain ValidationError."""
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as exc:
        fields = [".".join(str(p) for p in err["loc"]) for err in exc.errors()]
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or model.__name__}: {err['msg']}"
            for err in exc.errors()
        )
        raise ValidationError(
            f"Invalid {model.__name__}: {details}", fields=fields, **context
        ) from None
