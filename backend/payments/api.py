"""Payment endpoints: intent issuance and escrow/deposit queries."""

from __future__ import annotations

import logging

from django.shortcuts import get_object_or_404
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAdminUser, IsAuthenticated
from rest_framework.response import Response

from bookings.domain import require_capability
from core.responses import HANDLED_ERRORS, error_response

from . import escrow
from .intents import request_payment
from .models import Payment
from .serializers import PaymentIntentRequestSerializer, PaymentSerializer

logger = logging.getLogger(__name__)


def _payment_for_booking(booking_id) -> Payment:
    return get_object_or_404(
        Payment.objects.select_related("booking", "booking__equipment"),
        booking_id=booking_id,
    )


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def create_payment_intent(request):
    """Authorize a charge for dates that are not booked yet; no booking row is created."""
    serializer = PaymentIntentRequestSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data
    try:
        handle = request_payment(
            renter=request.user,
            equipment_id=data["equipment_id"],
            start_date=data["start_date"],
            end_date=data["end_date"],
            total_amount=data["total_amount"],
            insurance_type=data["insurance_type"],
            insurance_cost=data["insurance_cost"],
            damage_deposit_amount=data["damage_deposit_amount"],
        )
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    return Response(
        {"client_secret": handle.client_secret, "payment_intent_id": handle.payment_intent_id},
        status=status.HTTP_201_CREATED,
    )


@api_view(["GET"])
@permission_classes([IsAuthenticated])
def booking_payment_status(request, booking_id):
    payment = _payment_for_booking(booking_id)
    require_capability(
        payment.booking,
        request.user,
        ("owner", "renter"),
        "Only booking participants can view this payment.",
    )
    return Response(
        {**PaymentSerializer(payment).data, "amounts_reconcile": payment.amounts_reconcile()}
    )


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def release_booking_deposit(request, booking_id):
    """Owner confirms a clean return; the deposit goes back to the renter."""
    payment = _payment_for_booking(booking_id)
    require_capability(
        payment.booking,
        request.user,
        ("owner",),
        "Only the equipment owner can release the deposit.",
    )
    try:
        escrow.release_deposit(payment)
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    return Response(escrow.payment_status_summary(payment))


@api_view(["POST"])
@permission_classes([IsAdminUser])
def claim_booking_deposit(request, booking_id):
    """Record the outcome of a resolved damage claim (staff only)."""
    payment = _payment_for_booking(booking_id)
    try:
        escrow.claim_deposit(payment, reason=str(request.data.get("reason", ""))[:255])
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    return Response(escrow.payment_status_summary(payment))
