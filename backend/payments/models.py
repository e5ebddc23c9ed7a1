"""Payment, escrow and reconciliation records."""

from __future__ import annotations

import uuid
from decimal import Decimal

from django.conf import settings
from django.db import models

MONEY_TOLERANCE = Decimal("0.01")


def _money_field(**kwargs) -> models.DecimalField:
    kwargs.setdefault("default", Decimal("0.00"))
    return models.DecimalField(max_digits=10, decimal_places=2, **kwargs)


class Payment(models.Model):
    """
    One captured payment per booking, keyed by the provider's PaymentIntent id.

    The unique intent id is what makes webhook processing idempotent: the row is
    written before any other side effect of materializing a booking.
    """

    class PaymentStatus(models.TextChoices):
        PENDING = "pending", "Pending"
        SUCCEEDED = "succeeded", "Succeeded"
        FAILED = "failed", "Failed"
        REFUNDED = "refunded", "Refunded"

    class EscrowStatus(models.TextChoices):
        HELD = "held", "Held"
        RELEASING = "releasing", "Releasing"
        RELEASED = "released", "Released"
        REFUNDED = "refunded", "Refunded"

    class DepositStatus(models.TextChoices):
        HELD = "held", "Held"
        RELEASING = "releasing", "Releasing"
        RELEASED = "released", "Released"
        CLAIMED = "claimed", "Claimed"
        REFUNDED = "refunded", "Refunded"

    class PayoutStatus(models.TextChoices):
        PENDING = "pending", "Pending"
        PROCESSING = "processing", "Processing"
        COMPLETED = "completed", "Completed"
        FAILED = "failed", "Failed"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    booking = models.OneToOneField(
        "bookings.BookingRequest",
        on_delete=models.PROTECT,
        related_name="payment",
    )
    renter = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="payments_made",
    )
    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="payments_received",
    )
    stripe_payment_intent_id = models.CharField(max_length=120, unique=True)
    stripe_charge_id = models.CharField(max_length=120, blank=True, default="")
    stripe_refund_id = models.CharField(max_length=120, blank=True, default="")

    subtotal = _money_field()
    rental_amount = _money_field()
    service_fee = _money_field()
    tax = _money_field()
    insurance_amount = _money_field()
    deposit_amount = _money_field()
    total_amount = _money_field()
    currency = models.CharField(max_length=3, default="usd")
    escrow_amount = _money_field()
    owner_payout_amount = _money_field()
    refund_amount = _money_field(null=True, blank=True, default=None)
    refund_reason = models.CharField(max_length=255, blank=True, default="")

    payment_status = models.CharField(
        max_length=16,
        choices=PaymentStatus.choices,
        default=PaymentStatus.PENDING,
    )
    escrow_status = models.CharField(
        max_length=16,
        choices=EscrowStatus.choices,
        default=EscrowStatus.HELD,
    )
    deposit_status = models.CharField(
        max_length=16,
        choices=DepositStatus.choices,
        null=True,
        blank=True,
    )
    payout_status = models.CharField(
        max_length=16,
        choices=PayoutStatus.choices,
        default=PayoutStatus.PENDING,
    )
    failure_reason = models.TextField(blank=True, default="")

    escrow_released_at = models.DateTimeField(null=True, blank=True)
    deposit_released_at = models.DateTimeField(null=True, blank=True)
    deposit_claimed_at = models.DateTimeField(null=True, blank=True)
    payout_processed_at = models.DateTimeField(null=True, blank=True)
    refunded_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["escrow_status"], name="payments_pa_escrow__5e21c7_idx"),
            models.Index(fields=["deposit_status"], name="payments_pa_deposit_9a04d3_idx"),
        ]

    def __str__(self) -> str:
        return f"Payment {self.stripe_payment_intent_id} ({self.payment_status})"

    def component_sum(self) -> Decimal:
        return (
            self.rental_amount
            + self.service_fee
            + self.tax
            + self.insurance_amount
            + self.deposit_amount
        )

    def amounts_reconcile(self) -> bool:
        """True when the stored breakdown adds back up to the charged total."""
        return abs(self.component_sum() - self.total_amount) <= MONEY_TOLERANCE


class ReconciliationCase(models.Model):
    """
    A succeeded payment that could not become a booking.

    Keyed by intent id so webhook redeliveries for the same intent are
    recognized after the first one opened the case.
    """

    class Reason(models.TextChoices):
        DATES_UNAVAILABLE = "dates_unavailable", "Dates unavailable"
        EQUIPMENT_MISSING = "equipment_missing", "Equipment missing"
        BOOKING_NOT_PAYABLE = "booking_not_payable", "Booking not payable"
        INVALID_METADATA = "invalid_metadata", "Invalid metadata"

    class Status(models.TextChoices):
        OPEN = "open", "Open"
        REFUNDED = "refunded", "Refunded"
        REFUND_FAILED = "refund_failed", "Refund failed"
        RESOLVED = "resolved", "Resolved"

    stripe_payment_intent_id = models.CharField(max_length=120, unique=True)
    stripe_charge_id = models.CharField(max_length=120, blank=True, default="")
    stripe_refund_id = models.CharField(max_length=120, blank=True, default="")
    equipment_id = models.BigIntegerField(null=True, blank=True)
    renter_id = models.BigIntegerField(null=True, blank=True)
    start_date = models.DateField(null=True, blank=True)
    end_date = models.DateField(null=True, blank=True)
    amount = _money_field()
    currency = models.CharField(max_length=3, default="usd")
    reason = models.CharField(max_length=32, choices=Reason.choices)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.OPEN)
    metadata = models.JSONField(default=dict, blank=True)
    last_error = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    resolved_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"ReconciliationCase {self.stripe_payment_intent_id} ({self.reason}, {self.status})"
