"""Webhook ingestion: materialization, idempotency and reconciliation."""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from datetime import date, timedelta
from decimal import Decimal

import pytest

from bookings.models import BookingHistory, BookingRequest
from chat.models import Message
from payments.intents import INTENT_KIND
from payments.models import Payment, ReconciliationCase
from payments.webhooks import handle_payment_event

pytestmark = pytest.mark.django_db

Status = BookingRequest.Status
WEBHOOK_URL = "/api/payments/stripe/webhook/"


def future(days: int) -> date:
    return date.today() + timedelta(days=days)


def _metadata(equipment, renter, start, end, **overrides):
    meta = {
        "kind": INTENT_KIND,
        "equipment_id": str(equipment.pk),
        "renter_id": str(renter.pk),
        "owner_id": str(equipment.owner_id),
        "start_date": start.isoformat(),
        "end_date": end.isoformat(),
        "insurance_type": "none",
        "equipment_title": equipment.title,
        "total_amount": "257.50",
        "rental_amount": "150.00",
        "service_fee": "7.50",
        "insurance_cost": "0.00",
        "damage_deposit_amount": "100.00",
    }
    meta.update(overrides)
    return meta


def _event(intent_id, metadata, *, event_type="payment_intent.succeeded", amount=25750, **extra):
    intent = {
        "id": intent_id,
        "object": "payment_intent",
        "amount": amount,
        "amount_received": amount,
        "currency": "usd",
        "latest_charge": f"ch_{intent_id}",
        "metadata": metadata,
        **extra,
    }
    return {"id": f"evt_{intent_id}", "type": event_type, "data": {"object": intent}}


def test_success_materializes_booking_payment_history_and_message(
    equipment, renter_user, fake_redis, django_capture_on_commit_callbacks
):
    event = _event("pi_100", _metadata(equipment, renter_user, future(3), future(5)))

    with django_capture_on_commit_callbacks(execute=True):
        outcome = handle_payment_event(event)

    assert outcome == "materialized"
    booking = BookingRequest.objects.get()
    assert booking.status == Status.APPROVED
    assert booking.renter == renter_user
    assert booking.total_amount == Decimal("257.50")

    payment = Payment.objects.get()
    assert payment.booking == booking
    assert payment.stripe_payment_intent_id == "pi_100"
    assert payment.stripe_charge_id == "ch_pi_100"
    assert payment.escrow_status == Payment.EscrowStatus.HELD
    assert payment.deposit_status == Payment.DepositStatus.HELD
    assert payment.escrow_amount == Decimal("257.50")
    assert payment.owner_payout_amount == Decimal("150.00")
    assert payment.amounts_reconcile()

    entry = BookingHistory.objects.get(booking=booking)
    assert entry.old_status is None
    assert entry.new_status == Status.APPROVED
    assert entry.actor == BookingHistory.Actor.SYSTEM

    message = Message.objects.get(system_kind=Message.SYSTEM_PAYMENT_CONFIRMED)
    assert message.conversation.booking == booking
    assert message.text == (
        f'Payment confirmed! Riley Renter booked "Pro Camera Kit" '
        f"from {future(3):%b %d, %Y} to {future(5):%b %d, %Y} ($257.50 total)."
    )
    assert "chat:new_message" in fake_redis.events_for(renter_user.id)


def test_redelivery_is_idempotent(equipment, renter_user):
    event = _event("pi_101", _metadata(equipment, renter_user, future(3), future(5)))

    assert handle_payment_event(event) == "materialized"
    assert handle_payment_event(event) == "already_processed"
    assert handle_payment_event(event) == "already_processed"

    assert BookingRequest.objects.count() == 1
    assert Payment.objects.count() == 1
    assert BookingHistory.objects.count() == 1
    assert Message.objects.filter(system_kind=Message.SYSTEM_PAYMENT_CONFIRMED).count() == 1


def test_redelivery_restores_a_missing_confirmation_message(equipment, renter_user):
    event = _event("pi_102", _metadata(equipment, renter_user, future(3), future(5)))
    handle_payment_event(event)
    Message.objects.all().delete()

    assert handle_payment_event(event) == "already_processed"
    assert Message.objects.filter(system_kind=Message.SYSTEM_PAYMENT_CONFIRMED).count() == 1


def test_lost_race_opens_reconciliation_and_refunds(
    equipment, renter_user, other_user, booking_factory, fake_stripe,
    django_capture_on_commit_callbacks,
):
    booking_factory(
        start_date=future(4), end_date=future(6), status=Status.APPROVED, renter=other_user
    )
    event = _event("pi_103", _metadata(equipment, renter_user, future(3), future(5)))

    with django_capture_on_commit_callbacks(execute=True):
        outcome = handle_payment_event(event)

    assert outcome == "reconciliation_required"
    assert BookingRequest.objects.count() == 1
    assert not Payment.objects.exists()
    case = ReconciliationCase.objects.get(stripe_payment_intent_id="pi_103")
    assert case.reason == ReconciliationCase.Reason.DATES_UNAVAILABLE
    assert case.status == ReconciliationCase.Status.REFUNDED
    assert case.stripe_refund_id == "re_test_1"
    assert case.amount == Decimal("257.50")
    assert fake_stripe.refunds[0]["payment_intent"] == "pi_103"

    # Redelivery neither books nor refunds again.
    assert handle_payment_event(event) == "reconciliation_pending"
    assert len(fake_stripe.refunds) == 1


def test_failed_refund_marks_case(
    equipment, renter_user, other_user, booking_factory, fake_stripe,
    django_capture_on_commit_callbacks,
):
    from payments.stripe_api import StripeTransientError

    fake_stripe.refund_error = StripeTransientError("down")
    booking_factory(
        start_date=future(3), end_date=future(5), status=Status.PENDING, renter=other_user
    )
    event = _event("pi_104", _metadata(equipment, renter_user, future(3), future(5)))

    with django_capture_on_commit_callbacks(execute=True):
        handle_payment_event(event)

    case = ReconciliationCase.objects.get()
    assert case.status == ReconciliationCase.Status.REFUND_FAILED
    assert "down" in case.last_error


def test_missing_equipment_opens_reconciliation(equipment, renter_user):
    meta = _metadata(equipment, renter_user, future(3), future(5), equipment_id="999999")

    assert handle_payment_event(_event("pi_105", meta)) == "reconciliation_required"
    assert ReconciliationCase.objects.get().reason == ReconciliationCase.Reason.EQUIPMENT_MISSING


def test_incomplete_metadata_opens_reconciliation(equipment, renter_user):
    meta = _metadata(equipment, renter_user, future(3), future(5))
    del meta["start_date"]

    assert handle_payment_event(_event("pi_106", meta)) == "reconciliation_required"
    assert ReconciliationCase.objects.get().reason == ReconciliationCase.Reason.INVALID_METADATA


def test_amount_mismatch_opens_reconciliation(equipment, renter_user):
    meta = _metadata(equipment, renter_user, future(3), future(5))

    assert handle_payment_event(_event("pi_107", meta, amount=1000)) == "reconciliation_required"
    assert not BookingRequest.objects.exists()


def test_other_intent_kinds_are_ignored(equipment, renter_user):
    meta = _metadata(equipment, renter_user, future(3), future(5), kind="gift_card")

    assert handle_payment_event(_event("pi_108", meta)) == "ignored"
    assert not BookingRequest.objects.exists()


def test_unknown_event_types_are_ignored():
    assert handle_payment_event({"type": "charge.dispute.created", "data": {}}) == "ignored"


def test_paying_an_existing_pending_request_approves_it(equipment, renter_user, booking_factory):
    booking = booking_factory(start_date=future(3), end_date=future(5))
    meta = _metadata(equipment, renter_user, future(3), future(5), booking_id=str(booking.pk))

    assert handle_payment_event(_event("pi_109", meta)) == "materialized"

    booking.refresh_from_db()
    assert booking.status == Status.APPROVED
    assert booking.payment.stripe_payment_intent_id == "pi_109"
    assert BookingRequest.objects.count() == 1


def test_paying_a_cancelled_request_needs_reconciliation(equipment, renter_user, booking_factory):
    booking = booking_factory(start_date=future(3), end_date=future(5), status=Status.CANCELLED)
    meta = _metadata(equipment, renter_user, future(3), future(5), booking_id=str(booking.pk))

    assert handle_payment_event(_event("pi_110", meta)) == "reconciliation_required"
    assert ReconciliationCase.objects.get().reason == ReconciliationCase.Reason.BOOKING_NOT_PAYABLE


def test_failure_before_booking_only_logs(equipment, renter_user):
    meta = _metadata(equipment, renter_user, future(3), future(5))
    event = _event(
        "pi_111",
        meta,
        event_type="payment_intent.payment_failed",
        last_payment_error={"message": "Your card was declined."},
    )

    assert handle_payment_event(event) == "logged"
    assert not BookingRequest.objects.exists()


def test_failure_declines_pending_request(equipment, renter_user, booking_factory):
    booking = booking_factory(start_date=future(3), end_date=future(5))
    meta = _metadata(equipment, renter_user, future(3), future(5), booking_id=str(booking.pk))
    event = _event("pi_112", meta, event_type="payment_intent.payment_failed")

    assert handle_payment_event(event) == "booking_declined"
    booking.refresh_from_db()
    assert booking.status == Status.DECLINED


def test_late_failure_does_not_downgrade_a_success(equipment, renter_user):
    meta = _metadata(equipment, renter_user, future(3), future(5))
    handle_payment_event(_event("pi_113", meta))

    failed = _event("pi_113", meta, event_type="payment_intent.payment_failed")
    assert handle_payment_event(failed) == "ignored"
    assert Payment.objects.get().payment_status == Payment.PaymentStatus.SUCCEEDED


def _signed_post(client, body: str, secret: str):
    timestamp = int(time.time())
    signature = hmac.new(
        secret.encode(), f"{timestamp}.{body}".encode(), hashlib.sha256
    ).hexdigest()
    return client.post(
        WEBHOOK_URL,
        data=body,
        content_type="application/json",
        HTTP_STRIPE_SIGNATURE=f"t={timestamp},v1={signature}",
    )


def test_signed_webhook_is_processed(api_client, equipment, renter_user, settings):
    settings.STRIPE_WEBHOOK_SECRET = "whsec_test"
    event = _event("pi_200", _metadata(equipment, renter_user, future(3), future(5)))
    event["object"] = "event"

    resp = _signed_post(api_client, json.dumps(event), "whsec_test")

    assert resp.status_code == 200
    assert resp.data == {"received": True, "outcome": "materialized"}
    assert Payment.objects.filter(stripe_payment_intent_id="pi_200").exists()


def test_bad_signature_is_rejected(api_client, equipment, renter_user, settings):
    settings.STRIPE_WEBHOOK_SECRET = "whsec_test"
    event = _event("pi_201", _metadata(equipment, renter_user, future(3), future(5)))

    resp = _signed_post(api_client, json.dumps(event), "whsec_wrong")

    assert resp.status_code == 400
    assert not BookingRequest.objects.exists()


def test_missing_webhook_secret_is_service_unavailable(api_client, settings):
    settings.STRIPE_WEBHOOK_SECRET = ""

    resp = api_client.post(WEBHOOK_URL, data="{}", content_type="application/json")

    assert resp.status_code == 503


def test_second_intent_for_a_paid_booking_is_reconciled(
    api_client, equipment, renter_user, booking_factory, payment_factory, fake_stripe, settings,
):
    settings.STRIPE_WEBHOOK_SECRET = "whsec_test"
    booking = booking_factory(start_date=future(3), end_date=future(5), status=Status.APPROVED)
    first = payment_factory(booking)
    meta = _metadata(equipment, renter_user, future(3), future(5), booking_id=str(booking.pk))
    event = _event("pi_second", meta)
    event["object"] = "event"

    resp = _signed_post(api_client, json.dumps(event), "whsec_test")

    assert resp.status_code == 200
    assert resp.data["outcome"] == "reconciliation_required"
    assert list(Payment.objects.values_list("pk", flat=True)) == [first.pk]
    case = ReconciliationCase.objects.get(stripe_payment_intent_id="pi_second")
    assert case.reason == ReconciliationCase.Reason.BOOKING_NOT_PAYABLE
    assert "already paid" in case.last_error
