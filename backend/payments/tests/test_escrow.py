"""Escrow and deposit state machines, plus the tasks that drive them."""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from bookings.exceptions import InvalidTransition
from bookings.models import BookingRequest
from payments import escrow, tasks
from payments.exceptions import InvalidEscrowTransition
from payments.models import Payment
from payments.stripe_api import StripeTransientError

pytestmark = pytest.mark.django_db

Status = BookingRequest.Status
Escrow = Payment.EscrowStatus
Deposit = Payment.DepositStatus


def future(days: int) -> date:
    return date.today() + timedelta(days=days)


@pytest.fixture
def completed_payment(booking_factory, payment_factory):
    booking = booking_factory(
        start_date=future(-3),
        end_date=future(-1),
        status=Status.COMPLETED,
        completed_at=timezone.now(),
    )
    return payment_factory(booking)


@pytest.fixture
def cancelled_payment(booking_factory, payment_factory):
    booking = booking_factory(start_date=future(3), end_date=future(5), status=Status.CANCELLED)
    return payment_factory(booking)


def test_release_escrow_after_completion(completed_payment):
    payment = escrow.release_escrow(completed_payment)

    assert payment.escrow_status == Escrow.RELEASED
    assert payment.payout_status == Payment.PayoutStatus.COMPLETED
    assert payment.escrow_released_at is not None
    assert payment.payout_processed_at is not None


def test_release_escrow_is_idempotent(completed_payment):
    escrow.release_escrow(completed_payment)
    released_at = Payment.objects.get(pk=completed_payment.pk).escrow_released_at

    payment = escrow.release_escrow(Payment.objects.get(pk=completed_payment.pk))

    assert payment.escrow_released_at == released_at


def test_release_escrow_requires_completed_booking(booking_factory, payment_factory):
    booking = booking_factory(start_date=future(1), end_date=future(2), status=Status.ACTIVE)
    payment = payment_factory(booking)

    with pytest.raises(InvalidTransition):
        escrow.release_escrow(payment)
    payment.refresh_from_db()
    assert payment.escrow_status == Escrow.HELD


def test_refunded_escrow_cannot_be_released(completed_payment):
    Payment.objects.filter(pk=completed_payment.pk).update(escrow_status=Escrow.REFUNDED)
    completed_payment.refresh_from_db()

    with pytest.raises(InvalidEscrowTransition):
        escrow.release_escrow(completed_payment)


def test_refund_escrow_refunds_full_charge(cancelled_payment, fake_stripe):
    payment = escrow.refund_escrow(cancelled_payment)

    assert payment.escrow_status == Escrow.REFUNDED
    assert payment.payment_status == Payment.PaymentStatus.REFUNDED
    assert payment.deposit_status == Deposit.REFUNDED
    assert payment.refund_amount == Decimal("257.50")
    assert payment.stripe_refund_id == "re_test_1"
    refund = fake_stripe.refunds[0]
    assert refund["payment_intent"] == payment.stripe_payment_intent_id
    assert refund["idempotency_key"] == f"escrow_refund_{payment.pk}"
    assert "amount" not in refund


def test_refund_escrow_twice_calls_stripe_once(cancelled_payment, fake_stripe):
    escrow.refund_escrow(cancelled_payment)
    escrow.refund_escrow(Payment.objects.get(pk=cancelled_payment.pk))

    assert len(fake_stripe.refunds) == 1


def test_release_deposit_refunds_only_the_deposit(completed_payment, fake_stripe):
    payment = escrow.release_deposit(completed_payment)

    assert payment.deposit_status == Deposit.RELEASED
    assert payment.deposit_released_at is not None
    assert fake_stripe.refunds[0]["amount"] == 10000
    assert fake_stripe.refunds[0]["idempotency_key"] == f"deposit_release_{payment.pk}"


def test_release_deposit_rolls_back_on_provider_failure(completed_payment, fake_stripe):
    fake_stripe.refund_error = StripeTransientError("try later")

    with pytest.raises(StripeTransientError):
        escrow.release_deposit(completed_payment)

    completed_payment.refresh_from_db()
    assert completed_payment.deposit_status == Deposit.HELD


def test_claimed_deposit_cannot_be_released(completed_payment, fake_stripe):
    escrow.claim_deposit(completed_payment, reason="cracked lens")

    with pytest.raises(InvalidEscrowTransition):
        escrow.release_deposit(completed_payment)
    assert fake_stripe.refunds == []


def test_refund_deposit_only_from_held(completed_payment):
    escrow.refund_deposit(completed_payment)

    with pytest.raises(InvalidEscrowTransition):
        escrow.refund_deposit(completed_payment)


def test_refund_task_retries_transient_errors(cancelled_payment, fake_stripe, monkeypatch):
    fake_stripe.refund_error = StripeTransientError("stripe down")
    retried = []

    def fake_retry(*args, **kwargs):
        retried.append(kwargs.get("exc"))
        return RuntimeError("retry scheduled")

    monkeypatch.setattr(tasks.refund_cancelled_booking, "retry", fake_retry)

    with pytest.raises(RuntimeError):
        tasks.refund_cancelled_booking(str(cancelled_payment.booking_id))

    assert isinstance(retried[0], StripeTransientError)
    cancelled_payment.refresh_from_db()
    assert cancelled_payment.escrow_status == Escrow.HELD


def test_refund_task_skips_bookings_that_are_not_cancelled(completed_payment, fake_stripe):
    assert tasks.refund_cancelled_booking(str(completed_payment.booking_id)) is False
    assert fake_stripe.refunds == []


def test_requeue_sweep_refunds_stuck_cancellations(cancelled_payment, fake_stripe):
    assert tasks.requeue_unrefunded_cancellations() == 1

    cancelled_payment.refresh_from_db()
    assert cancelled_payment.escrow_status == Escrow.REFUNDED
    assert tasks.requeue_unrefunded_cancellations() == 0


def test_release_escrow_task(completed_payment):
    assert tasks.release_escrow_for_booking(str(completed_payment.booking_id)) is True
    completed_payment.refresh_from_db()
    assert completed_payment.escrow_status == Escrow.RELEASED


def test_auto_release_waits_for_the_window(booking_factory, payment_factory, fake_stripe, settings):
    settings.DEPOSIT_RELEASE_WINDOW_HOURS = 48
    old = booking_factory(
        start_date=future(-10),
        end_date=future(-8),
        status=Status.COMPLETED,
        completed_at=timezone.now() - timedelta(hours=72),
    )
    recent = booking_factory(
        start_date=future(-4),
        end_date=future(-2),
        status=Status.COMPLETED,
        completed_at=timezone.now() - timedelta(hours=2),
    )
    old_payment = payment_factory(old)
    recent_payment = payment_factory(recent)

    assert tasks.auto_release_deposits() == 1

    old_payment.refresh_from_db()
    recent_payment.refresh_from_db()
    assert old_payment.deposit_status == Deposit.RELEASED
    assert recent_payment.deposit_status == Deposit.HELD


def test_payment_status_endpoint_for_participants(
    auth_client, renter_user, other_user, completed_payment
):
    url = f"/api/payments/bookings/{completed_payment.booking_id}/"

    resp = auth_client(renter_user).get(url)
    assert resp.status_code == 200
    assert resp.data["escrow_status"] == Escrow.HELD
    assert resp.data["amounts_reconcile"] is True

    assert auth_client(other_user).get(url).status_code == 403


def test_owner_releases_deposit_via_api(auth_client, owner_user, renter_user, completed_payment, fake_stripe):
    url = f"/api/payments/bookings/{completed_payment.booking_id}/deposit/release/"

    assert auth_client(renter_user).post(url).status_code == 403

    resp = auth_client(owner_user).post(url)
    assert resp.status_code == 200
    assert resp.data["deposit_status"] == Deposit.RELEASED

    again = auth_client(owner_user).post(url)
    assert again.status_code == 409


def test_payment_only_tracks_provider_ids_it_writes():
    stripe_fields = {f.name for f in Payment._meta.get_fields() if f.name.startswith("stripe_")}

    assert stripe_fields == {"stripe_payment_intent_id", "stripe_charge_id", "stripe_refund_id"}
