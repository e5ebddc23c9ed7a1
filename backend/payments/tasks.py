"""Celery tasks for escrow refunds, releases and reconciliation."""

from __future__ import annotations

import logging
from datetime import timedelta

from celery import shared_task
from django.conf import settings
from django.utils import timezone

from bookings.models import BookingRequest

from . import escrow
from .exceptions import InvalidEscrowTransition
from .models import Payment, ReconciliationCase
from .stripe_api import PaymentProviderError, StripeTransientError, refund_payment_intent

logger = logging.getLogger(__name__)

REFUND_RETRY_DELAY_SECONDS = 60


@shared_task(
    name="payments.refund_cancelled_booking",
    bind=True,
    max_retries=8,
    default_retry_delay=REFUND_RETRY_DELAY_SECONDS,
)
def refund_cancelled_booking(self, booking_id: str) -> bool:
    """
    Refund held escrow for a cancelled booking.

    Returns True when a refund was recorded, False when there was nothing to do.
    Transient provider errors are retried; the periodic sweep picks up anything
    that exhausts its retries.
    """
    payment = (
        Payment.objects.filter(
            booking_id=booking_id,
            booking__status=BookingRequest.Status.CANCELLED,
            escrow_status=Payment.EscrowStatus.HELD,
        )
        .select_related("booking")
        .first()
    )
    if payment is None:
        return False
    try:
        escrow.refund_escrow(payment, reason="booking cancelled")
    except StripeTransientError as exc:
        logger.warning("refund_cancelled_booking: transient failure for %s", booking_id)
        raise self.retry(exc=exc)
    return True


@shared_task(name="payments.requeue_unrefunded_cancellations")
def requeue_unrefunded_cancellations() -> int:
    """Queue refunds for cancelled bookings whose escrow is still held."""
    booking_ids = list(
        Payment.objects.filter(
            booking__status=BookingRequest.Status.CANCELLED,
            escrow_status=Payment.EscrowStatus.HELD,
        ).values_list("booking_id", flat=True)
    )
    for booking_id in booking_ids:
        refund_cancelled_booking.delay(str(booking_id))
    if booking_ids:
        logger.warning("requeue_unrefunded_cancellations: queued %s refunds", len(booking_ids))
    return len(booking_ids)


@shared_task(name="payments.release_escrow_for_booking")
def release_escrow_for_booking(booking_id: str) -> bool:
    payment = Payment.objects.filter(booking_id=booking_id).first()
    if payment is None:
        logger.info("release_escrow_for_booking: booking %s has no payment", booking_id)
        return False
    try:
        escrow.release_escrow(payment)
    except InvalidEscrowTransition:
        logger.warning(
            "release_escrow_for_booking: escrow not held for booking %s", booking_id
        )
        return False
    return True


@shared_task(name="payments.refund_reconciliation_case")
def refund_reconciliation_case(case_id: int) -> bool:
    """Refund a charge that could not be turned into a booking."""
    case = ReconciliationCase.objects.filter(
        pk=case_id,
        status__in=[ReconciliationCase.Status.OPEN, ReconciliationCase.Status.REFUND_FAILED],
    ).first()
    if case is None:
        return False
    try:
        refund_id = refund_payment_intent(
            case.stripe_payment_intent_id,
            idempotency_key=f"reconciliation_refund_{case.stripe_payment_intent_id}",
            metadata={"kind": "reconciliation_refund", "reason": case.reason},
        )
    except PaymentProviderError as exc:
        ReconciliationCase.objects.filter(pk=case.pk).update(
            status=ReconciliationCase.Status.REFUND_FAILED,
            last_error=str(exc),
            updated_at=timezone.now(),
        )
        logger.error(
            "reconciliation: automatic refund failed for %s",
            case.stripe_payment_intent_id,
            exc_info=True,
        )
        return False

    now = timezone.now()
    ReconciliationCase.objects.filter(pk=case.pk).update(
        status=ReconciliationCase.Status.REFUNDED,
        stripe_refund_id=refund_id,
        resolved_at=now,
        updated_at=now,
    )
    logger.info(
        "reconciliation: refunded %s",
        case.stripe_payment_intent_id,
        extra={"refund_id": refund_id},
    )
    return True


@shared_task(name="payments.auto_release_deposits")
def auto_release_deposits() -> int:
    """
    Release damage deposits still held once the post-return window has passed.

    Returns the number of deposits released.
    """
    window = timedelta(hours=getattr(settings, "DEPOSIT_RELEASE_WINDOW_HOURS", 48))
    cutoff = timezone.now() - window
    released_count = 0

    qs = Payment.objects.filter(
        booking__status=BookingRequest.Status.COMPLETED,
        booking__completed_at__lte=cutoff,
        deposit_status=Payment.DepositStatus.HELD,
        deposit_amount__gt=0,
    )
    for payment in qs:
        try:
            escrow.release_deposit(payment)
        except Exception:
            logger.exception("auto_release_deposits: failed for payment %s", payment.pk)
            continue
        released_count += 1

    return released_count
