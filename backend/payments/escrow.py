"""
Escrow and damage-deposit state machines.

Every status change is a compare-and-swap UPDATE filtered on the expected
source state, so two workers racing on the same payment cannot both win.

Escrow:   held -> releasing -> released, held -> refunded
Deposit:  held -> releasing -> released, held -> claimed, held -> refunded
A `releasing -> held` swap is only used to roll back a failed provider call.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

from django.utils import timezone

from bookings.exceptions import InvalidTransition
from bookings.models import BookingRequest

from .exceptions import InvalidEscrowTransition
from .models import Payment
from .stripe_api import PaymentProviderError, refund_payment_intent

logger = logging.getLogger(__name__)

Escrow = Payment.EscrowStatus
Deposit = Payment.DepositStatus


def _swap(
    payment: Payment,
    field: str,
    expected: tuple[str, ...],
    target: str,
    **extra: Any,
) -> Payment:
    updated = Payment.objects.filter(pk=payment.pk, **{f"{field}__in": expected}).update(
        **{field: target},
        updated_at=timezone.now(),
        **extra,
    )
    payment.refresh_from_db()
    if not updated:
        raise InvalidEscrowTransition(field, expected, getattr(payment, field))
    return payment


def _require_booking_status(payment: Payment, *statuses: str) -> None:
    status = (
        BookingRequest.objects.filter(pk=payment.booking_id)
        .values_list("status", flat=True)
        .first()
    )
    if status not in statuses:
        raise InvalidTransition(
            f"Booking must be {' or '.join(statuses)} (is {status}).", field="booking"
        )


def release_escrow(payment: Payment) -> Payment:
    """Release the held rental amount to the owner after the rental completed."""
    _require_booking_status(payment, BookingRequest.Status.COMPLETED)
    if payment.escrow_status == Escrow.RELEASED:
        return payment
    _swap(
        payment,
        "escrow_status",
        (Escrow.HELD,),
        Escrow.RELEASING,
        payout_status=Payment.PayoutStatus.PROCESSING,
    )
    now = timezone.now()
    _swap(
        payment,
        "escrow_status",
        (Escrow.RELEASING,),
        Escrow.RELEASED,
        escrow_released_at=now,
        payout_status=Payment.PayoutStatus.COMPLETED,
        payout_processed_at=now,
    )
    logger.info(
        "escrow: released",
        extra={"payment_id": str(payment.pk), "owner_payout": str(payment.owner_payout_amount)},
    )
    return payment


def refund_escrow(payment: Payment, *, reason: str = "booking cancelled") -> Payment:
    """
    Refund the full charge for a cancelled booking.

    The provider refund is keyed on the payment id, so a retry after a crash
    between the refund and the status swap does not refund twice.
    """
    if payment.escrow_status == Escrow.REFUNDED:
        return payment
    if payment.escrow_status != Escrow.HELD:
        raise InvalidEscrowTransition("escrow_status", (Escrow.HELD,), payment.escrow_status)

    refund_id = refund_payment_intent(
        payment.stripe_payment_intent_id,
        idempotency_key=f"escrow_refund_{payment.pk}",
        metadata={"booking_id": str(payment.booking_id), "kind": "escrow_refund"},
    )
    now = timezone.now()
    try:
        _swap(
            payment,
            "escrow_status",
            (Escrow.HELD,),
            Escrow.REFUNDED,
            payment_status=Payment.PaymentStatus.REFUNDED,
            refund_amount=payment.total_amount,
            refund_reason=reason,
            stripe_refund_id=refund_id,
            refunded_at=now,
        )
    except InvalidEscrowTransition:
        if payment.escrow_status == Escrow.REFUNDED:
            return payment
        raise
    if payment.deposit_status == Deposit.HELD:
        Payment.objects.filter(pk=payment.pk, deposit_status=Deposit.HELD).update(
            deposit_status=Deposit.REFUNDED, updated_at=now
        )
        payment.refresh_from_db()
    logger.info(
        "escrow: refunded",
        extra={"payment_id": str(payment.pk), "refund_id": refund_id, "reason": reason},
    )
    return payment


def release_deposit(payment: Payment) -> Payment:
    """
    Return the damage deposit to the renter after a clean return.

    held -> releasing is claimed first; a provider failure rolls back to held
    and re-raises so the caller can retry later.
    """
    _require_booking_status(payment, BookingRequest.Status.COMPLETED)
    if payment.deposit_amount <= Decimal("0") or payment.deposit_status is None:
        raise InvalidEscrowTransition("deposit_status", (Deposit.HELD,), payment.deposit_status)
    _swap(payment, "deposit_status", (Deposit.HELD,), Deposit.RELEASING)
    try:
        refund_payment_intent(
            payment.stripe_payment_intent_id,
            amount=payment.deposit_amount,
            idempotency_key=f"deposit_release_{payment.pk}",
            metadata={"booking_id": str(payment.booking_id), "kind": "deposit_release"},
        )
    except PaymentProviderError:
        _swap(payment, "deposit_status", (Deposit.RELEASING,), Deposit.HELD)
        logger.warning(
            "escrow: deposit release failed; rolled back to held",
            extra={"payment_id": str(payment.pk)},
            exc_info=True,
        )
        raise
    _swap(
        payment,
        "deposit_status",
        (Deposit.RELEASING,),
        Deposit.RELEASED,
        deposit_released_at=timezone.now(),
    )
    logger.info("escrow: deposit released", extra={"payment_id": str(payment.pk)})
    return payment


def claim_deposit(payment: Payment, *, reason: str = "") -> Payment:
    """Record that the deposit was kept to cover a resolved damage claim."""
    _swap(
        payment,
        "deposit_status",
        (Deposit.HELD,),
        Deposit.CLAIMED,
        deposit_claimed_at=timezone.now(),
    )
    logger.info(
        "escrow: deposit claimed",
        extra={"payment_id": str(payment.pk), "reason": reason},
    )
    return payment


def refund_deposit(payment: Payment) -> Payment:
    return _swap(payment, "deposit_status", (Deposit.HELD,), Deposit.REFUNDED)


def payment_status_summary(payment: Payment) -> dict[str, Any]:
    return {
        "payment_id": str(payment.pk),
        "booking_id": str(payment.booking_id),
        "payment_status": payment.payment_status,
        "escrow_status": payment.escrow_status,
        "escrow_amount": str(payment.escrow_amount),
        "deposit_status": payment.deposit_status,
        "deposit_amount": str(payment.deposit_amount),
        "payout_status": payment.payout_status,
        "owner_payout_amount": str(payment.owner_payout_amount),
        "refund_amount": str(payment.refund_amount) if payment.refund_amount is not None else None,
        "escrow_released_at": payment.escrow_released_at,
        "deposit_released_at": payment.deposit_released_at,
        "payout_processed_at": payment.payout_processed_at,
        "amounts_reconcile": payment.amounts_reconcile(),
    }
