"""Domain errors raised by booking and payment request flows."""

from __future__ import annotations

from django.core.exceptions import ValidationError

DATES_UNAVAILABLE_MESSAGE = (
    "These dates were just booked by someone else. Please choose different dates."
)


class BookingError(ValidationError):
    """Base class; carries a field -> messages dict like any ValidationError."""

    field = "non_field_errors"
    default_message = "Booking request is invalid."

    def __init__(self, message: str | None = None, *, field: str | None = None):
        super().__init__({field or self.field: [message or self.default_message]})


class InvalidTransition(BookingError):
    field = "status"
    default_message = "This booking cannot change to the requested status."


class DatesUnavailable(BookingError):
    default_message = DATES_UNAVAILABLE_MESSAGE


class SelfBookingNotAllowed(BookingError):
    field = "equipment"
    default_message = "You cannot book your own equipment."


class EquipmentUnavailable(BookingError):
    field = "equipment"
    default_message = "This equipment is not currently available for rent."


class InvalidAmount(BookingError):
    field = "total_amount"
    default_message = "Invalid payment amount."
