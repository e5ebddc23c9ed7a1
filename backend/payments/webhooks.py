"""
Stripe webhook ingestion for booking payments.

Deliveries are at-least-once and unordered. The unique
`Payment.stripe_payment_intent_id` is the idempotency anchor: once a Payment
row exists for an intent, later deliveries only fill in missing details.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping

import stripe
from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.db import DatabaseError, IntegrityError, transaction
from rest_framework import status
from rest_framework.decorators import api_view, authentication_classes, permission_classes
from rest_framework.response import Response

from bookings.domain import is_available
from bookings.models import BookingHistory, BookingRequest
from bookings.services import lock_equipment, record_history, transition_booking
from chat.models import ensure_booking_confirmation_message
from equipment.models import Equipment

from .exceptions import ReconciliationRequired
from .intents import INTENT_KIND, BookingIntentMetadata
from .models import Payment, ReconciliationCase
from .stripe_api import (
    StripeConfigurationError,
    StripeTransientError,
    _from_cents,
    _obj_value,
    _to_cents,
    charge_id_from_intent,
    construct_webhook_event,
    default_currency,
    failure_reason_from_intent,
)

logger = logging.getLogger(__name__)
User = get_user_model()

Reason = ReconciliationCase.Reason

OUTCOME_MATERIALIZED = "materialized"
OUTCOME_ALREADY_PROCESSED = "already_processed"
OUTCOME_RECONCILIATION = "reconciliation_required"
OUTCOME_RECONCILIATION_PENDING = "reconciliation_pending"
OUTCOME_PAYMENT_FAILED = "payment_failed"
OUTCOME_BOOKING_DECLINED = "booking_declined"
OUTCOME_LOGGED = "logged"
OUTCOME_IGNORED = "ignored"


def _intent_amount_cents(intent: Mapping[str, Any]) -> int | None:
    amount = _obj_value(intent, "amount_received") or _obj_value(intent, "amount")
    return int(amount) if amount is not None else None


def _create_payment(
    *,
    booking: BookingRequest,
    meta: BookingIntentMetadata,
    intent_id: str,
    charge_id: str,
    currency: str,
) -> Payment:
    breakdown = meta.breakdown
    return Payment.objects.create(
        booking=booking,
        renter_id=booking.renter_id,
        owner_id=booking.equipment.owner_id,
        stripe_payment_intent_id=intent_id,
        stripe_charge_id=charge_id,
        subtotal=breakdown.subtotal,
        rental_amount=breakdown.rental,
        service_fee=breakdown.service_fee,
        tax=breakdown.tax,
        insurance_amount=breakdown.insurance,
        deposit_amount=breakdown.deposit,
        total_amount=breakdown.total,
        currency=currency,
        escrow_amount=breakdown.total,
        owner_payout_amount=breakdown.rental,
        payment_status=Payment.PaymentStatus.SUCCEEDED,
        escrow_status=Payment.EscrowStatus.HELD,
        deposit_status=Payment.DepositStatus.HELD if breakdown.deposit > 0 else None,
    )


def _attach_to_existing_booking(meta: BookingIntentMetadata, equipment: Equipment) -> BookingRequest:
    """Manual flow: the intent paid for a request that already exists."""
    try:
        booking = BookingRequest.objects.select_for_update().filter(pk=meta.booking_id).first()
    except ValidationError as exc:
        raise ReconciliationRequired(Reason.INVALID_METADATA, "malformed booking_id") from exc
    if booking is None or booking.equipment_id != equipment.pk:
        raise ReconciliationRequired(Reason.INVALID_METADATA, "booking_id does not match")
    if Payment.objects.filter(booking_id=booking.pk).exists():
        raise ReconciliationRequired(Reason.BOOKING_NOT_PAYABLE, "booking already paid")

    if booking.status == BookingRequest.Status.PENDING:
        if not is_available(
            equipment, booking.start_date, booking.end_date, exclude_booking_id=booking.pk
        ):
            raise ReconciliationRequired(Reason.DATES_UNAVAILABLE, str(booking.pk))
        return transition_booking(
            booking.pk,
            BookingRequest.Status.APPROVED,
            actor=BookingHistory.Actor.SYSTEM,
            reason="payment confirmed",
        )
    if booking.status == BookingRequest.Status.APPROVED:
        return booking
    raise ReconciliationRequired(Reason.BOOKING_NOT_PAYABLE, f"booking is {booking.status}")


def materialize_booking(
    *,
    intent_id: str,
    charge_id: str,
    currency: str,
    meta: BookingIntentMetadata,
) -> BookingRequest | None:
    """
    Create the approved booking, its payment, history and confirmation message.

    Runs as one transaction under the equipment lock; every other writer of a
    date-blocking booking takes the same lock, so the availability re-check
    cannot race. Returns None when another delivery already materialized the
    intent. Raises ReconciliationRequired when the charge cannot be booked.
    """
    with transaction.atomic():
        try:
            equipment = lock_equipment(meta.equipment_id)
        except Equipment.DoesNotExist as exc:
            raise ReconciliationRequired(Reason.EQUIPMENT_MISSING, str(meta.equipment_id)) from exc

        if Payment.objects.filter(stripe_payment_intent_id=intent_id).exists():
            return None

        if meta.booking_id:
            booking = _attach_to_existing_booking(meta, equipment)
        else:
            if not is_available(equipment, meta.start_date, meta.end_date):
                raise ReconciliationRequired(
                    Reason.DATES_UNAVAILABLE,
                    f"{meta.start_date.isoformat()}..{meta.end_date.isoformat()}",
                )
            renter = User.objects.filter(pk=meta.renter_id).first()
            if renter is None:
                raise ReconciliationRequired(Reason.INVALID_METADATA, "unknown renter")
            if meta.owner_id != equipment.owner_id:
                logger.warning(
                    "webhook: intent owner differs from current equipment owner",
                    extra={"payment_intent_id": intent_id, "equipment_id": equipment.pk},
                )
            booking = BookingRequest.objects.create(
                equipment=equipment,
                renter=renter,
                start_date=meta.start_date,
                end_date=meta.end_date,
                total_amount=meta.breakdown.total,
                status=BookingRequest.Status.APPROVED,
                damage_deposit_amount=meta.breakdown.deposit,
                insurance_type=meta.insurance_type,
                insurance_cost=meta.breakdown.insurance,
            )

        # The Payment is the first row written after the booking in this
        # transaction; history and chat rows never commit without it.
        _create_payment(
            booking=booking,
            meta=meta,
            intent_id=intent_id,
            charge_id=charge_id,
            currency=currency,
        )
        if not meta.booking_id:
            record_history(
                booking,
                old_status=None,
                new_status=BookingRequest.Status.APPROVED,
                actor=BookingHistory.Actor.SYSTEM,
                reason="payment confirmed",
                metadata={"payment_intent_id": intent_id},
            )
        ensure_booking_confirmation_message(booking)

    logger.info(
        "webhook: booking materialized",
        extra={"payment_intent_id": intent_id, "booking_id": str(booking.pk)},
    )
    return booking


def open_reconciliation_case(
    intent: Mapping[str, Any],
    *,
    reason: str,
    detail: str = "",
    meta: BookingIntentMetadata | None = None,
) -> ReconciliationCase:
    """Record a succeeded-but-unbookable payment and queue its automatic refund."""
    from .tasks import refund_reconciliation_case

    intent_id = _obj_value(intent, "id")
    metadata = dict(_obj_value(intent, "metadata") or {})
    defaults: dict[str, Any] = {
        "stripe_charge_id": charge_id_from_intent(intent),
        "amount": _from_cents(_intent_amount_cents(intent)),
        "currency": (_obj_value(intent, "currency") or default_currency()).lower(),
        "reason": reason,
        "metadata": metadata,
        "last_error": detail,
    }
    if meta is not None:
        defaults.update(
            equipment_id=meta.equipment_id,
            renter_id=meta.renter_id,
            start_date=meta.start_date,
            end_date=meta.end_date,
        )
    case, created = ReconciliationCase.objects.get_or_create(
        stripe_payment_intent_id=intent_id,
        defaults=defaults,
    )
    if created:
        logger.error(
            "reconciliation: payment %s succeeded but cannot be booked (%s)",
            intent_id,
            reason,
            extra={"payment_intent_id": intent_id, "reason": reason, "detail": detail},
        )
        case_id = case.pk
        transaction.on_commit(lambda: refund_reconciliation_case.delay(case_id))
    return case


def _confirm_existing_payment(payment: Payment, charge_id: str) -> None:
    """Redelivery: fill in late details and finish side effects a crash may have skipped."""
    with transaction.atomic():
        payment = Payment.objects.select_for_update().get(pk=payment.pk)
        update_fields = []
        if charge_id and not payment.stripe_charge_id:
            payment.stripe_charge_id = charge_id
            update_fields.append("stripe_charge_id")
        if payment.payment_status in {
            Payment.PaymentStatus.PENDING,
            Payment.PaymentStatus.FAILED,
        }:
            payment.payment_status = Payment.PaymentStatus.SUCCEEDED
            payment.failure_reason = ""
            update_fields += ["payment_status", "failure_reason"]
        if update_fields:
            payment.save(update_fields=update_fields + ["updated_at"])
        ensure_booking_confirmation_message(payment.booking)


def handle_payment_succeeded(intent: Mapping[str, Any]) -> str:
    intent_id = _obj_value(intent, "id")
    charge_id = charge_id_from_intent(intent)

    existing = Payment.objects.filter(stripe_payment_intent_id=intent_id).first()
    if existing is not None:
        _confirm_existing_payment(existing, charge_id)
        logger.info("webhook: intent %s already processed", intent_id)
        return OUTCOME_ALREADY_PROCESSED
    if ReconciliationCase.objects.filter(stripe_payment_intent_id=intent_id).exists():
        logger.info("webhook: intent %s already has a reconciliation case", intent_id)
        return OUTCOME_RECONCILIATION_PENDING

    metadata = _obj_value(intent, "metadata") or {}
    if metadata.get("kind", INTENT_KIND) != INTENT_KIND:
        return OUTCOME_IGNORED

    try:
        meta = BookingIntentMetadata.from_stripe(metadata)
    except (KeyError, ValueError, TypeError, ValidationError) as exc:
        open_reconciliation_case(intent, reason=Reason.INVALID_METADATA, detail=str(exc))
        return OUTCOME_RECONCILIATION

    charged_cents = _intent_amount_cents(intent)
    if charged_cents is not None and charged_cents != _to_cents(meta.breakdown.total):
        open_reconciliation_case(
            intent,
            reason=Reason.INVALID_METADATA,
            detail=f"charged {charged_cents} cents, metadata total {meta.breakdown.total}",
            meta=meta,
        )
        return OUTCOME_RECONCILIATION

    currency = (_obj_value(intent, "currency") or default_currency()).lower()
    try:
        booking = materialize_booking(
            intent_id=intent_id,
            charge_id=charge_id,
            currency=currency,
            meta=meta,
        )
    except ReconciliationRequired as exc:
        open_reconciliation_case(intent, reason=exc.reason, detail=exc.detail, meta=meta)
        return OUTCOME_RECONCILIATION
    except IntegrityError:
        # A concurrent delivery inserted the same intent between our check and insert.
        if Payment.objects.filter(stripe_payment_intent_id=intent_id).exists():
            logger.info("webhook: intent %s materialized concurrently", intent_id)
            return OUTCOME_ALREADY_PROCESSED
        raise
    if booking is None:
        return OUTCOME_ALREADY_PROCESSED
    return OUTCOME_MATERIALIZED


def handle_payment_failed(intent: Mapping[str, Any]) -> str:
    intent_id = _obj_value(intent, "id")
    reason = failure_reason_from_intent(intent)

    payment = Payment.objects.filter(stripe_payment_intent_id=intent_id).first()
    if payment is not None:
        updated = (
            Payment.objects.filter(
                pk=payment.pk,
                payment_status__in=[Payment.PaymentStatus.PENDING, Payment.PaymentStatus.FAILED],
            ).update(payment_status=Payment.PaymentStatus.FAILED, failure_reason=reason)
        )
        if not updated:
            logger.info(
                "webhook: ignoring late failure for settled intent %s", intent_id
            )
            return OUTCOME_IGNORED
        return OUTCOME_PAYMENT_FAILED

    booking_id = (_obj_value(intent, "metadata") or {}).get("booking_id")
    if booking_id:
        try:
            booking = BookingRequest.objects.filter(pk=booking_id).first()
        except ValidationError:
            booking = None
        if booking is not None and booking.status == BookingRequest.Status.PENDING:
            transition_booking(
                booking.pk,
                BookingRequest.Status.DECLINED,
                actor=BookingHistory.Actor.SYSTEM,
                reason="payment failed",
                metadata={"payment_intent_id": intent_id, "failure_reason": reason},
            )
            return OUTCOME_BOOKING_DECLINED

    logger.info(
        "webhook: payment failed before any booking existed",
        extra={"payment_intent_id": intent_id, "failure_reason": reason},
    )
    return OUTCOME_LOGGED


EVENT_HANDLERS: dict[str, Callable[[Mapping[str, Any]], str]] = {
    "payment_intent.succeeded": handle_payment_succeeded,
    "payment_intent.payment_failed": handle_payment_failed,
}


def handle_payment_event(event: Mapping[str, Any]) -> str:
    """Dispatch a verified event; returns a short outcome label."""
    handler = EVENT_HANDLERS.get(_obj_value(event, "type"))
    if handler is None:
        return OUTCOME_IGNORED
    data = _obj_value(event, "data") or {}
    intent = _obj_value(data, "object") or {}
    return handler(intent)


@api_view(["POST"])
@authentication_classes([])
@permission_classes([])
def stripe_webhook(request):
    """Verify and process Stripe PaymentIntent callbacks."""
    sig_header = request.META.get("HTTP_STRIPE_SIGNATURE", "")
    try:
        event = construct_webhook_event(request.body, sig_header)
    except StripeConfigurationError:
        logger.error("stripe_webhook: webhook secret not configured")
        return Response(status=status.HTTP_503_SERVICE_UNAVAILABLE)
    except ValueError:
        return Response(status=status.HTTP_400_BAD_REQUEST)
    except stripe.error.SignatureVerificationError:
        logger.warning("stripe_webhook: signature verification failed")
        return Response(status=status.HTTP_400_BAD_REQUEST)

    try:
        outcome = handle_payment_event(event)
    except (DatabaseError, StripeTransientError):
        logger.exception(
            "stripe_webhook: transient failure handling %s", _obj_value(event, "id")
        )
        return Response(status=status.HTTP_503_SERVICE_UNAVAILABLE)

    return Response({"received": True, "outcome": outcome}, status=status.HTTP_200_OK)
