"""Serializers for booking-related API endpoints."""

from __future__ import annotations

from decimal import Decimal

from rest_framework import serializers

from .models import BookingHistory, BookingRequest


class BookingRequestSerializer(serializers.ModelSerializer):
    """Read shape of a booking, including who owns the equipment."""

    equipment_title = serializers.ReadOnlyField(source="equipment.title")
    owner = serializers.ReadOnlyField(source="equipment.owner_id")
    renter = serializers.PrimaryKeyRelatedField(read_only=True)
    days = serializers.ReadOnlyField()
    payment_status = serializers.SerializerMethodField()

    class Meta:
        model = BookingRequest
        fields = (
            "id",
            "equipment",
            "equipment_title",
            "owner",
            "renter",
            "start_date",
            "end_date",
            "days",
            "status",
            "total_amount",
            "damage_deposit_amount",
            "insurance_type",
            "insurance_cost",
            "message",
            "payment_status",
            "created_at",
            "updated_at",
            "activated_at",
            "completed_at",
        )
        read_only_fields = fields

    def get_payment_status(self, obj: BookingRequest) -> str | None:
        payment = getattr(obj, "payment", None)
        return payment.payment_status if payment is not None else None


class BookingCreateSerializer(serializers.Serializer):
    """Manual-flow request: dates are held as `pending` until approved or reclaimed."""

    equipment = serializers.IntegerField(min_value=1)
    start_date = serializers.DateField()
    end_date = serializers.DateField()
    total_amount = serializers.DecimalField(max_digits=10, decimal_places=2)
    message = serializers.CharField(required=False, allow_blank=True, default="")
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


class AvailabilityQuerySerializer(serializers.Serializer):
    equipment = serializers.IntegerField(min_value=1)
    start_date = serializers.DateField(required=False)
    end_date = serializers.DateField(required=False)

    def validate(self, attrs):
        if bool(attrs.get("start_date")) != bool(attrs.get("end_date")):
            raise serializers.ValidationError(
                "start_date and end_date must be provided together."
            )
        return attrs


class TransitionReasonSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, max_length=255, default="")


class BookingHistorySerializer(serializers.ModelSerializer):
    class Meta:
        model = BookingHistory
        fields = (
            "id",
            "old_status",
            "new_status",
            "actor",
            "changed_by",
            "reason",
            "metadata",
            "changed_at",
        )
        read_only_fields = fields
