"""Celery tasks for bookings."""

from __future__ import annotations

import logging
from datetime import timedelta

from celery import shared_task
from django.conf import settings
from django.utils import timezone

from .models import BookingRequest
from .services import reclaim_stale_booking

logger = logging.getLogger(__name__)


@shared_task(name="bookings.reclaim_stale_bookings")
def reclaim_stale_bookings(timeout_minutes: int | None = None) -> int:
    """
    Cancel `pending` requests older than the timeout that never got paid.

    Approved, active and paid bookings are never touched. Each booking is
    handled on its own so one failure does not stop the sweep.

    Returns the number of bookings reclaimed.
    """
    if timeout_minutes is None:
        timeout_minutes = getattr(settings, "BOOKING_PENDING_TIMEOUT_MINUTES", 1440)
    cutoff = timezone.now() - timedelta(minutes=timeout_minutes)
    reclaimed_count = 0

    candidate_ids = list(
        BookingRequest.objects.filter(
            status=BookingRequest.Status.PENDING,
            created_at__lt=cutoff,
            payment__isnull=True,
        ).values_list("pk", flat=True)
    )
    for booking_id in candidate_ids:
        try:
            if reclaim_stale_booking(booking_id, cutoff=cutoff):
                reclaimed_count += 1
        except Exception:
            logger.exception("reclaim_stale_bookings: failed for booking %s", booking_id)
            continue

    if reclaimed_count:
        logger.info("reclaim_stale_bookings: cancelled %s stale requests", reclaimed_count)
    return reclaimed_count
