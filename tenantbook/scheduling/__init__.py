from tenantbook.scheduling.booking_state import BookingAttempt, BookingStatus, InvalidTransitionError
from tenantbook.scheduling.coordinator import BookingCoordinator, ReconcileReport
from tenantbook.scheduling.policy import AvailabilityPolicy, WorkWindow, validate_slot_collection
from tenantbook.scheduling.resolver import AvailabilityResolver

__all__ = [
    "AvailabilityPolicy",
    "WorkWindow",
    "validate_slot_collection",
    "AvailabilityResolver",
    "BookingCoordinator",
    "ReconcileReport",
    "BookingAttempt",
    "BookingStatus",
    "InvalidTransitionError",
]
