"""
State machine for a single booking attempt.

    REQUESTED -> VALIDATING -> RESERVING -> COMMITTED
    REQUESTED | VALIDATING | RESERVING -> FAILED

COMMITTED and FAILED are terminal. Every transition is recorded with a
timestamp so a failed attempt shows exactly how far it got.

Usage:
    attempt = BookingAttempt()
    attempt.transition(BookingStatus.VALIDATING)
    assert attempt.status == BookingStatus.VALIDATING
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from tenantbook.logging_context import get_request_logger, new_request_id

logger = get_request_logger(__name__)


class BookingStatus(str, Enum):
    """Lifecycle of one booking attempt."""
    REQUESTED = "requested"
    VALIDATING = "validating"
    RESERVING = "reserving"
    COMMITTED = "committed"
    FAILED = "failed"


TERMINAL_STATES = frozenset({BookingStatus.COMMITTED, BookingStatus.FAILED})

TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.REQUESTED: frozenset({BookingStatus.VALIDATING, BookingStatus.FAILED}),
    BookingStatus.VALIDATING: frozenset({BookingStatus.RESERVING, BookingStatus.FAILED}),
    BookingStatus.RESERVING: frozenset({BookingStatus.COMMITTED, BookingStatus.FAILED}),
    BookingStatus.COMMITTED: frozenset(),
    BookingStatus.FAILED: frozenset(),
}


class InvalidTransitionError(Exception):
    """Raised when a transition is not valid from the current state."""


@dataclass
class StatusEntry:
    """Recorded history entry for a state visit."""
    status: BookingStatus
    entered_at: datetime
    reason: Optional[str] = None


@dataclass
class BookingAttempt:
    """Tracks one attempt from request to commit or failure."""

    request_id: str = field(default_factory=new_request_id)
    status: BookingStatus = BookingStatus.REQUESTED
    history: list[StatusEntry] = field(default_factory=list)
    error: Optional[Exception] = None

    def __post_init__(self) -> None:
        if not self.history:
            self.history.append(
                StatusEntry(status=self.status, entered_at=datetime.now(timezone.utc))
            )

    def transition(self, new_status: BookingStatus, reason: Optional[str] = None) -> BookingStatus:
        """
        Move to ``new_status``.

        Raises:
            InvalidTransitionError: if the move is not allowed from the current state.
        """
        allowed = TRANSITIONS[self.status]
        if new_status not in allowed:
            raise InvalidTransitionError(
                f"No transition from '{self.status.value}' to '{new_status.value}'. "
                f"Allowed: {sorted(s.value for s in allowed)}"
            )
        old_status = self.status
        self.status = new_status
        self.history.append(
            StatusEntry(status=new_status, entered_at=datetime.now(timezone.utc), reason=reason)
        )
        logger.debug(
            "Booking %s: %s -> %s%s",
            self.request_id, old_status.value, new_status.value,
            f" ({reason})" if reason else "",
        )
        return new_status

    def fail(self, error: Exception) -> None:
        """Move to FAILED from any non-terminal state, keeping the cause."""
        self.error = error
        if not self.is_terminal():
            self.transition(BookingStatus.FAILED, reason=type(error).__name__)

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATES

    def get_status_trace(self) -> list[str]:
        """Ordered list of status names visited."""
        return [entry.status.value for entry in self.history]
