"""Tests for booking date validation, conflict detection and capabilities."""

from __future__ import annotations

from datetime import date, timedelta

import pytest
from django.core.exceptions import ValidationError
from rest_framework.exceptions import PermissionDenied

from bookings.domain import (
    ALLOWED_TRANSITIONS,
    assert_transition,
    booked_ranges,
    booking_capabilities,
    can_transition,
    ensure_no_conflict,
    is_available,
    require_capability,
    validate_booking_dates,
)
from bookings.exceptions import DatesUnavailable, InvalidTransition
from bookings.models import BookingRequest

pytestmark = pytest.mark.django_db

Status = BookingRequest.Status


def future(days: int) -> date:
    return date.today() + timedelta(days=days)


@pytest.mark.parametrize("status", [Status.PENDING, Status.APPROVED, Status.ACTIVE])
def test_blocking_statuses_conflict(equipment, booking_factory, status):
    booking_factory(start_date=future(10), end_date=future(14), status=status)

    assert not is_available(equipment, future(12), future(13))
    with pytest.raises(DatesUnavailable):
        ensure_no_conflict(equipment, future(12), future(13))


@pytest.mark.parametrize("status", [Status.DECLINED, Status.CANCELLED, Status.COMPLETED])
def test_terminal_statuses_never_conflict(equipment, booking_factory, status):
    booking_factory(start_date=future(10), end_date=future(14), status=status)

    assert is_available(equipment, future(10), future(14))


def test_touching_endpoints_overlap_because_ranges_are_inclusive(equipment, booking_factory):
    booking_factory(start_date=future(10), end_date=future(14), status=Status.APPROVED)

    assert not is_available(equipment, future(14), future(16))
    assert not is_available(equipment, future(8), future(10))
    assert is_available(equipment, future(15), future(16))
    assert is_available(equipment, future(5), future(9))


def test_conflicts_are_scoped_to_equipment(equipment, booking_factory, owner_user):
    from equipment.models import Equipment

    other = Equipment.objects.create(owner=owner_user, title="Tripod", daily_rate=5)
    booking_factory(start_date=future(10), end_date=future(14), status=Status.APPROVED)

    assert is_available(other, future(10), future(14))


def test_exclude_booking_id_ignores_itself(equipment, booking_factory):
    booking = booking_factory(start_date=future(10), end_date=future(14))

    assert is_available(equipment, future(10), future(14), exclude_booking_id=booking.pk)


def test_validate_booking_dates():
    validate_booking_dates(future(1), future(1))

    with pytest.raises(ValidationError):
        validate_booking_dates(future(3), future(2))
    with pytest.raises(ValidationError):
        validate_booking_dates(None, future(2))


def test_validate_booking_dates_caps_length(settings):
    settings.BOOKING_MAX_DAYS = 30
    validate_booking_dates(future(1), future(1) + timedelta(days=29))

    with pytest.raises(ValidationError) as excinfo:
        validate_booking_dates(future(1), future(1) + timedelta(days=30))
    assert "30 days" in str(excinfo.value)


def test_booked_ranges_lists_blocking_bookings_in_order(equipment, booking_factory):
    booking_factory(start_date=future(20), end_date=future(21), status=Status.APPROVED)
    booking_factory(start_date=future(5), end_date=future(6), status=Status.PENDING)
    booking_factory(start_date=future(8), end_date=future(9), status=Status.CANCELLED)

    ranges = booked_ranges(equipment)

    assert [r["start_date"] for r in ranges] == [
        future(5).isoformat(),
        future(20).isoformat(),
    ]


def test_transition_table_is_one_directional():
    assert can_transition(Status.PENDING, Status.APPROVED)
    assert can_transition(Status.APPROVED, Status.ACTIVE)
    assert can_transition(Status.ACTIVE, Status.COMPLETED)
    assert not can_transition(Status.APPROVED, Status.PENDING)
    assert not can_transition(Status.ACTIVE, Status.CANCELLED)
    for terminal in (Status.DECLINED, Status.CANCELLED, Status.COMPLETED):
        assert ALLOWED_TRANSITIONS[terminal] == frozenset()


def test_assert_transition_raises_for_illegal_move(booking_factory):
    booking = booking_factory(
        start_date=future(3), end_date=future(4), status=Status.COMPLETED
    )

    with pytest.raises(InvalidTransition):
        assert_transition(booking, Status.ACTIVE)


def test_capabilities_follow_current_ownership(booking_factory, owner_user, renter_user, other_user):
    booking = booking_factory(start_date=future(3), end_date=future(4))

    assert booking_capabilities(booking, owner_user) == {"owner"}
    assert booking_capabilities(booking, renter_user) == {"renter"}
    assert booking_capabilities(booking, other_user) == set()

    with pytest.raises(PermissionDenied):
        require_capability(booking, renter_user, ("owner",), "owners only")
    assert require_capability(booking, owner_user, ("owner",), "owners only") == "owner"
