"""Issue payment authorizations before any booking row exists."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Mapping

from django.core.exceptions import ValidationError
from django.shortcuts import get_object_or_404

from bookings.domain import ensure_no_conflict, validate_booking_dates
from bookings.exceptions import InvalidTransition
from bookings.models import BookingRequest
from bookings.services import check_request_preconditions
from equipment.models import Equipment

from .models import Payment
from .pricing import MoneyBreakdown, compute_breakdown, to_decimal
from .stripe_api import IDEMPOTENCY_VERSION, _to_cents, create_booking_payment_intent

logger = logging.getLogger(__name__)

INTENT_KIND = "equipment_booking"


@dataclass(frozen=True)
class PaymentIntentHandle:
    client_secret: str
    payment_intent_id: str


@dataclass(frozen=True)
class BookingIntentMetadata:
    """Everything the webhook needs to rebuild the booking and payment rows."""

    equipment_id: int
    renter_id: int
    owner_id: int
    start_date: date
    end_date: date
    breakdown: MoneyBreakdown
    insurance_type: str
    equipment_title: str
    booking_id: str = ""

    def to_stripe(self) -> dict[str, str]:
        data = {
            "kind": INTENT_KIND,
            "equipment_id": str(self.equipment_id),
            "renter_id": str(self.renter_id),
            "owner_id": str(self.owner_id),
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "insurance_type": self.insurance_type,
            "equipment_title": self.equipment_title[:200],
            **self.breakdown.as_metadata(),
        }
        if self.booking_id:
            data["booking_id"] = self.booking_id
        return data

    @classmethod
    def from_stripe(cls, metadata: Mapping[str, str]) -> "BookingIntentMetadata":
        """Parse intent metadata; raises ValueError/KeyError when incomplete."""
        breakdown = compute_breakdown(
            metadata["total_amount"],
            metadata.get("insurance_cost") or "0",
            metadata.get("damage_deposit_amount") or "0",
        )
        insurance_type = metadata.get("insurance_type") or BookingRequest.Insurance.NONE
        if insurance_type not in BookingRequest.Insurance.values:
            raise ValueError(f"unknown insurance_type {insurance_type!r}")
        return cls(
            equipment_id=int(metadata["equipment_id"]),
            renter_id=int(metadata["renter_id"]),
            owner_id=int(metadata["owner_id"]),
            start_date=date.fromisoformat(metadata["start_date"]),
            end_date=date.fromisoformat(metadata["end_date"]),
            breakdown=breakdown,
            insurance_type=insurance_type,
            equipment_title=metadata.get("equipment_title", ""),
            booking_id=metadata.get("booking_id", ""),
        )


def _issue(meta: BookingIntentMetadata, *, idempotency_key: str, email: str) -> PaymentIntentHandle:
    intent = create_booking_payment_intent(
        amount=meta.breakdown.total,
        metadata=meta.to_stripe(),
        idempotency_key=idempotency_key,
        customer_email=email,
    )
    logger.info(
        "payments: issued payment intent",
        extra={
            "payment_intent_id": intent.id,
            "equipment_id": meta.equipment_id,
            "renter_id": meta.renter_id,
        },
    )
    return PaymentIntentHandle(client_secret=intent.client_secret, payment_intent_id=intent.id)


def request_payment(
    *,
    renter,
    equipment_id: int,
    start_date: date,
    end_date: date,
    total_amount,
    insurance_type: str = BookingRequest.Insurance.NONE,
    insurance_cost=Decimal("0.00"),
    damage_deposit_amount=Decimal("0.00"),
) -> PaymentIntentHandle:
    """
    Authorize a payment for a booking that does not exist yet.

    Checks run in order: equipment exists, caller is not the owner, equipment
    is available, dates are free, amounts are sane. Nothing is written locally;
    the booking is created by the webhook once the charge succeeds.
    """
    equipment = get_object_or_404(Equipment.objects.select_related("owner"), pk=equipment_id)
    check_request_preconditions(
        renter=renter, equipment=equipment, start_date=start_date, end_date=end_date
    )
    breakdown = compute_breakdown(total_amount, insurance_cost, damage_deposit_amount)
    if insurance_type not in BookingRequest.Insurance.values:
        raise ValidationError({"insurance_type": ["Unknown insurance type."]})

    meta = BookingIntentMetadata(
        equipment_id=equipment.pk,
        renter_id=renter.id,
        owner_id=equipment.owner_id,
        start_date=start_date,
        end_date=end_date,
        breakdown=breakdown,
        insurance_type=insurance_type,
        equipment_title=equipment.title,
    )
    idempotency_key = (
        f"intent:{renter.id}:{equipment.pk}:{start_date.isoformat()}:{end_date.isoformat()}"
        f":{_to_cents(breakdown.total)}:{IDEMPOTENCY_VERSION}"
    )
    return _issue(meta, idempotency_key=idempotency_key, email=renter.email)


def request_payment_for_booking(booking: BookingRequest, renter) -> PaymentIntentHandle:
    """Authorize payment for an existing pending or approved request (manual flow)."""
    if booking.status not in {BookingRequest.Status.PENDING, BookingRequest.Status.APPROVED}:
        raise InvalidTransition("Only pending or approved bookings can be paid.")
    if Payment.objects.filter(booking=booking).exists():
        raise InvalidTransition("This booking has already been paid.")
    validate_booking_dates(booking.start_date, booking.end_date)
    ensure_no_conflict(
        booking.equipment_id,
        booking.start_date,
        booking.end_date,
        exclude_booking_id=booking.pk,
    )
    breakdown = compute_breakdown(
        to_decimal(booking.total_amount, "total_amount"),
        booking.insurance_cost,
        booking.damage_deposit_amount,
    )
    meta = BookingIntentMetadata(
        equipment_id=booking.equipment_id,
        renter_id=booking.renter_id,
        owner_id=booking.equipment.owner_id,
        start_date=booking.start_date,
        end_date=booking.end_date,
        breakdown=breakdown,
        insurance_type=booking.insurance_type,
        equipment_title=booking.equipment.title,
        booking_id=str(booking.pk),
    )
    idempotency_key = (
        f"booking:{booking.pk}:{IDEMPOTENCY_VERSION}:charge:{_to_cents(breakdown.total)}"
    )
    return _issue(meta, idempotency_key=idempotency_key, email=renter.email)
