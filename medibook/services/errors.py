"""Domain error taxonomy surfaced by the scheduling services."""

from __future__ import annotations


class BookingError(Exception):
    """Base class for errors that callers are expected to branch on."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(BookingError):
    """Malformed or out-of-policy input. Never retried."""

    status_code = 400


class NotFoundError(BookingError):
    """Referenced entity is absent or not owned by the caller."""

    status_code = 404


class ConflictError(BookingError):
    """Capacity exhausted, overlapping windows or an unavailable preferred time."""

    status_code = 409


class InternalError(BookingError):
    """Unexpected failure inside a booking transaction."""

    status_code = 500
