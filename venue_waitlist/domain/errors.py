"""Error taxonomy shared by the reservation and waitlist services."""

from __future__ import annotations

from venue_waitlist.domain.models import ConflictCounts


class BookingError(Exception):
    """Base class for every lifecycle failure surfaced to callers."""


class NotFoundError(BookingError):
    """Raised when a referenced entity id does not exist."""


class InvalidStateError(BookingError):
    """Raised when a status transition is illegal from the current status."""


class ConflictError(BookingError):
    """Raised when the requested window overlaps reservations or blackouts."""

    def __init__(self, conflicts: ConflictCounts, message: str | None = None) -> None:
        self.conflicts = conflicts
        super().__init__(message or f"Window is not available: {conflicts.describe()}")


class DuplicateError(BookingError):
    """Raised when a client already holds an active waitlist entry for the slot."""


class InvalidArgumentError(BookingError):
    """Raised for out-of-range priorities, malformed windows and similar input."""


class AvailabilityCheckFailedError(BookingError):
    """Raised when the availability query itself fails; callers must fail closed."""
