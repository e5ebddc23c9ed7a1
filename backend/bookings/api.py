"""API viewsets and permissions for booking requests."""

from __future__ import annotations

import logging

from django.db.models import Q
from django.shortcuts import get_object_or_404
from django.utils import timezone
from rest_framework import mixins, permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from core.responses import HANDLED_ERRORS, error_response
from equipment.models import Equipment
from payments.intents import request_payment_for_booking

from . import services
from .domain import booked_ranges, is_available, require_capability, validate_booking_dates
from .models import BookingRequest
from .serializers import (
    AvailabilityQuerySerializer,
    BookingCreateSerializer,
    BookingHistorySerializer,
    BookingRequestSerializer,
    TransitionReasonSerializer,
)

logger = logging.getLogger(__name__)


class IsBookingParticipant(permissions.BasePermission):
    """Allow access only to the renter and the equipment owner."""

    def has_object_permission(self, request, view, obj: BookingRequest) -> bool:
        user_id = getattr(request.user, "id", None)
        return user_id in (obj.equipment.owner_id, obj.renter_id)


class BookingRequestViewSet(
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    viewsets.GenericViewSet,
):
    """Read access plus state transitions for booking requests."""

    serializer_class = BookingRequestSerializer
    permission_classes = (permissions.IsAuthenticated, IsBookingParticipant)
    filterset_fields = ("status", "equipment")

    def get_queryset(self):
        """Restrict bookings to the authenticated participant."""
        user = self.request.user
        if not user.is_authenticated:
            return BookingRequest.objects.none()
        return (
            BookingRequest.objects.select_related("equipment", "renter", "payment")
            .filter(Q(equipment__owner=user) | Q(renter=user))
            .order_by("-created_at")
        )

    def get_object(self):
        """Fetch a single booking and enforce participant permissions."""
        obj = get_object_or_404(
            BookingRequest.objects.select_related("equipment", "renter"),
            pk=self.kwargs["pk"],
        )
        self.check_object_permissions(self.request, obj)
        return obj

    def _respond(self, booking: BookingRequest, *, code=status.HTTP_200_OK) -> Response:
        booking = (
            BookingRequest.objects.select_related("equipment", "renter", "payment")
            .get(pk=booking.pk)
        )
        return Response(self.get_serializer(booking).data, status=code)

    def create(self, request, *args, **kwargs):
        """Submit a request without an upfront charge (manual approval flow)."""
        serializer = BookingCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        try:
            booking = services.create_booking_request(
                renter=request.user,
                equipment_id=data["equipment"],
                start_date=data["start_date"],
                end_date=data["end_date"],
                total_amount=data["total_amount"],
                message=data["message"],
                insurance_type=data["insurance_type"],
                insurance_cost=data["insurance_cost"],
                damage_deposit_amount=data["damage_deposit_amount"],
            )
        except HANDLED_ERRORS as exc:
            return error_response(exc)
        return self._respond(booking, code=status.HTTP_201_CREATED)

    @action(
        detail=False,
        methods=["get"],
        url_path="availability",
        permission_classes=[permissions.AllowAny],
    )
    def availability(self, request, *args, **kwargs):
        """Booked ranges for an equipment, plus a yes/no for a requested range."""
        query = AvailabilityQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        equipment = get_object_or_404(Equipment, pk=query.validated_data["equipment"])
        payload = {
            "equipment": equipment.pk,
            "is_available": equipment.is_available,
            "booked_ranges": booked_ranges(equipment, from_date=timezone.localdate()),
        }
        start = query.validated_data.get("start_date")
        end = query.validated_data.get("end_date")
        if start and end:
            try:
                validate_booking_dates(start, end)
            except HANDLED_ERRORS as exc:
                return error_response(exc)
            payload["start_date"] = start
            payload["end_date"] = end
            payload["available"] = equipment.is_available and is_available(equipment, start, end)
        return Response(payload)

    def _transition(self, request, operation, **kwargs) -> Response:
        booking: BookingRequest = self.get_object()
        try:
            booking = operation(booking, request.user, **kwargs)
        except HANDLED_ERRORS as exc:
            return error_response(exc)
        return self._respond(booking)

    @action(detail=True, methods=["post"], url_path="approve")
    def approve(self, request, *args, **kwargs):
        return self._transition(request, services.approve_booking)

    @action(detail=True, methods=["post"], url_path="decline")
    def decline(self, request, *args, **kwargs):
        body = TransitionReasonSerializer(data=request.data)
        body.is_valid(raise_exception=True)
        return self._transition(
            request, services.decline_booking, reason=body.validated_data["reason"]
        )

    @action(detail=True, methods=["post"], url_path="cancel")
    def cancel(self, request, *args, **kwargs):
        body = TransitionReasonSerializer(data=request.data)
        body.is_valid(raise_exception=True)
        return self._transition(
            request, services.cancel_booking, reason=body.validated_data["reason"]
        )

    @action(detail=True, methods=["post"], url_path="activate")
    def activate(self, request, *args, **kwargs):
        return self._transition(request, services.activate_booking)

    @action(detail=True, methods=["post"], url_path="complete")
    def complete(self, request, *args, **kwargs):
        return self._transition(request, services.complete_booking)

    @action(detail=True, methods=["post"], url_path="pay")
    def pay(self, request, *args, **kwargs):
        """Authorize payment for an existing pending or approved request."""
        booking: BookingRequest = self.get_object()
        require_capability(
            booking, request.user, ("renter",), "Only the renter can pay for this booking."
        )
        try:
            handle = request_payment_for_booking(booking, request.user)
        except HANDLED_ERRORS as exc:
            return error_response(exc)
        return Response(
            {
                "client_secret": handle.client_secret,
                "payment_intent_id": handle.payment_intent_id,
            },
            status=status.HTTP_201_CREATED,
        )

    @action(detail=True, methods=["get"], url_path="history")
    def history(self, request, *args, **kwargs):
        booking: BookingRequest = self.get_object()
        entries = booking.history.all()
        return Response(BookingHistorySerializer(entries, many=True).data)
