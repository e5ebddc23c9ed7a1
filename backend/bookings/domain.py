"""Domain helpers for booking validation, availability and state transitions."""

from __future__ import annotations

from datetime import date
from typing import Iterable, Literal, Optional
from uuid import UUID

from django.conf import settings
from django.core.exceptions import ValidationError
from django.utils import timezone
from rest_framework.exceptions import PermissionDenied

from equipment.models import Equipment

from .exceptions import DatesUnavailable, InvalidTransition
from .models import BookingRequest

Status = BookingRequest.Status

# Statuses that hold dates on an equipment's calendar.
BLOCKING_STATUSES = (
    Status.PENDING,
    Status.APPROVED,
    Status.ACTIVE,
)

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    Status.PENDING: frozenset({Status.APPROVED, Status.DECLINED, Status.CANCELLED}),
    Status.APPROVED: frozenset({Status.ACTIVE, Status.CANCELLED}),
    Status.ACTIVE: frozenset({Status.COMPLETED}),
    Status.DECLINED: frozenset(),
    Status.CANCELLED: frozenset(),
    Status.COMPLETED: frozenset(),
}

Capability = Literal["owner", "renter"]


def validate_booking_dates(start_date: date | None, end_date: date | None) -> None:
    """Validate that the dates exist and form an inclusive range within the length cap."""
    if not start_date or not end_date:
        raise ValidationError({"non_field_errors": ["Start and end dates are required."]})
    if start_date > end_date:
        raise ValidationError({"end_date": ["End date cannot be before start date."]})
    max_days = getattr(settings, "BOOKING_MAX_DAYS", 30)
    if (end_date - start_date).days + 1 > max_days:
        raise ValidationError(
            {"end_date": [f"Bookings cannot be longer than {max_days} days."]}
        )


def ensure_not_in_past(start_date: date, *, today: date | None = None) -> None:
    today = today or timezone.localdate()
    if start_date < today:
        raise ValidationError({"start_date": ["Start date cannot be in the past."]})


def conflicting_bookings(
    equipment: Equipment | int,
    start_date: date,
    end_date: date,
    *,
    exclude_booking_id: Optional[UUID | str] = None,
):
    """Blocking bookings whose closed interval intersects [start_date, end_date]."""
    equipment_id = equipment.pk if isinstance(equipment, Equipment) else equipment
    qs = BookingRequest.objects.filter(
        equipment_id=equipment_id,
        status__in=BLOCKING_STATUSES,
        start_date__lte=end_date,
        end_date__gte=start_date,
    )
    if exclude_booking_id is not None:
        qs = qs.exclude(pk=exclude_booking_id)
    return qs


def is_available(
    equipment: Equipment | int,
    start_date: date,
    end_date: date,
    *,
    exclude_booking_id: Optional[UUID | str] = None,
) -> bool:
    """Return True when no blocking booking overlaps the requested range."""
    return not conflicting_bookings(
        equipment, start_date, end_date, exclude_booking_id=exclude_booking_id
    ).exists()


def ensure_no_conflict(
    equipment: Equipment | int,
    start_date: date,
    end_date: date,
    *,
    exclude_booking_id: Optional[UUID | str] = None,
) -> None:
    """Raise DatesUnavailable when the range overlaps a blocking booking."""
    if not is_available(
        equipment, start_date, end_date, exclude_booking_id=exclude_booking_id
    ):
        raise DatesUnavailable()


def booked_ranges(
    equipment: Equipment | int, *, from_date: date | None = None
) -> list[dict[str, str]]:
    """Blocked date ranges for an equipment calendar, ordered by start."""
    equipment_id = equipment.pk if isinstance(equipment, Equipment) else equipment
    qs = BookingRequest.objects.filter(
        equipment_id=equipment_id, status__in=BLOCKING_STATUSES
    )
    if from_date is not None:
        qs = qs.filter(end_date__gte=from_date)
    return [
        {"start_date": start.isoformat(), "end_date": end.isoformat()}
        for start, end in qs.order_by("start_date").values_list("start_date", "end_date")
    ]


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def assert_transition(booking: BookingRequest, target: str) -> None:
    if not can_transition(booking.status, target):
        raise InvalidTransition(
            f"Cannot change a {booking.status} booking to {target}."
        )


def booking_capabilities(booking: BookingRequest, user) -> set[Capability]:
    """Resolve the caller's relationship to the booking from current data."""
    user_id = getattr(user, "id", None)
    if user_id is None:
        return set()
    capabilities: set[Capability] = set()
    if booking.equipment.owner_id == user_id:
        capabilities.add("owner")
    if booking.renter_id == user_id:
        capabilities.add("renter")
    return capabilities


def require_capability(
    booking: BookingRequest, user, allowed: Iterable[Capability], message: str
) -> Capability:
    """Return the matching capability or raise PermissionDenied."""
    capabilities = booking_capabilities(booking, user)
    for capability in allowed:
        if capability in capabilities:
            return capability
    raise PermissionDenied(message)
