from __future__ import annotations

from datetime import date, timedelta

import pytest
from django.utils import timezone

from bookings.models import BookingHistory, BookingRequest
from bookings.tasks import reclaim_stale_bookings

pytestmark = pytest.mark.django_db

Status = BookingRequest.Status


def future(days: int) -> date:
    return date.today() + timedelta(days=days)


def _age(booking: BookingRequest, minutes: int) -> None:
    BookingRequest.objects.filter(pk=booking.pk).update(
        created_at=timezone.now() - timedelta(minutes=minutes)
    )


def test_stale_pending_request_is_cancelled_by_system(booking_factory):
    booking = booking_factory(start_date=future(5), end_date=future(6))
    _age(booking, 120)

    assert reclaim_stale_bookings(timeout_minutes=60) == 1

    booking.refresh_from_db()
    assert booking.status == Status.CANCELLED
    entry = BookingHistory.objects.get(booking=booking)
    assert entry.actor == BookingHistory.Actor.SYSTEM
    assert entry.changed_by is None
    assert entry.reason == "timeout"


def test_fresh_requests_are_left_alone(booking_factory):
    booking = booking_factory(start_date=future(5), end_date=future(6))
    _age(booking, 10)

    assert reclaim_stale_bookings(timeout_minutes=60) == 0
    booking.refresh_from_db()
    assert booking.status == Status.PENDING


@pytest.mark.parametrize("status", [Status.APPROVED, Status.ACTIVE, Status.COMPLETED])
def test_non_pending_bookings_are_never_reclaimed(booking_factory, status):
    booking = booking_factory(start_date=future(0), end_date=future(6), status=status)
    _age(booking, 5000)

    assert reclaim_stale_bookings(timeout_minutes=60) == 0
    booking.refresh_from_db()
    assert booking.status == status


def test_paid_pending_booking_is_not_reclaimed(booking_factory, payment_factory):
    booking = booking_factory(start_date=future(5), end_date=future(6))
    payment_factory(booking)
    _age(booking, 5000)

    assert reclaim_stale_bookings(timeout_minutes=60) == 0
    booking.refresh_from_db()
    assert booking.status == Status.PENDING


def test_default_timeout_comes_from_settings(booking_factory, settings):
    settings.BOOKING_PENDING_TIMEOUT_MINUTES = 30
    booking = booking_factory(start_date=future(5), end_date=future(6))
    _age(booking, 45)

    assert reclaim_stale_bookings() == 1


def test_one_failure_does_not_stop_the_sweep(booking_factory, other_user, monkeypatch):
    from bookings import tasks

    first = booking_factory(start_date=future(5), end_date=future(6))
    second = booking_factory(start_date=future(8), end_date=future(9), renter=other_user)
    _age(first, 120)
    _age(second, 120)

    real = tasks.reclaim_stale_booking

    def flaky(booking_id, *, cutoff):
        if str(booking_id) == str(first.pk):
            raise RuntimeError("database hiccup")
        return real(booking_id, cutoff=cutoff)

    monkeypatch.setattr(tasks, "reclaim_stale_booking", flaky)

    assert reclaim_stale_bookings(timeout_minutes=60) == 1
    first.refresh_from_db()
    second.refresh_from_db()
    assert first.status == Status.PENDING
    assert second.status == Status.CANCELLED
