"""Input and output serializers for payment endpoints."""

from __future__ import annotations

from decimal import Decimal

from rest_framework import serializers

from bookings.models import BookingRequest

from .models import Payment


class PaymentIntentRequestSerializer(serializers.Serializer):
    equipment_id = serializers.IntegerField(min_value=1)
    start_date = serializers.DateField()
    end_date = serializers.DateField()
    total_amount = serializers.DecimalField(max_digits=10, decimal_places=2)
    insurance_type = serializers.ChoiceField(
        choices=BookingRequest.Insurance.choices,
        default=BookingRequest.Insurance.NONE,
    )
    insurance_cost = serializers.DecimalField(
        max_digits=10, decimal_places=2, min_value=Decimal("0.00"), default=Decimal("0.00")
    )
    damage_deposit_amount = serializers.DecimalField(
        max_digits=10, decimal_places=2, min_value=Decimal("0.00"), default=Decimal("0.00")
    )


class PaymentSerializer(serializers.ModelSerializer):
    class Meta:
        model = Payment
        fields = (
            "id",
            "booking",
            "stripe_payment_intent_id",
            "subtotal",
            "rental_amount",
            "service_fee",
            "tax",
            "insurance_amount",
            "deposit_amount",
            "total_amount",
            "currency",
            "escrow_amount",
            "owner_payout_amount",
            "payment_status",
            "escrow_status",
            "deposit_status",
            "payout_status",
            "refund_amount",
            "failure_reason",
            "escrow_released_at",
            "deposit_released_at",
            "payout_processed_at",
            "created_at",
        )
        read_only_fields = fields
