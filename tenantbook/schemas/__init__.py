from tenantbook.schemas.booking_schema import AppointmentCommand, BookingRequest
from tenantbook.schemas.tenant_schema import (
    Appointment,
    AvailabilitySlot,
    PendingBooking,
    Product,
    Service,
    Tenant,
    ThemeColors,
)

__all__ = [
    "Tenant", "Service", "Product", "AvailabilitySlot", "Appointment",
    "PendingBooking", "ThemeColors", "BookingRequest", "AppointmentCommand",
]
