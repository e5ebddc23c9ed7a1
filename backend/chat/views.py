"""Chat API views."""

from __future__ import annotations

from django.db.models import Q
from django.shortcuts import get_object_or_404
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from bookings.models import BookingRequest
from chat.models import Conversation, create_user_message, get_or_create_booking_conversation
from chat.serializers import (
    ConversationDetailSerializer,
    ConversationSerializer,
    MessageSerializer,
    SendMessageSerializer,
)

CLOSED_BOOKING_STATUSES = {
    BookingRequest.Status.DECLINED,
    BookingRequest.Status.CANCELLED,
    BookingRequest.Status.COMPLETED,
}


def _get_user_conversation_or_404(user, pk: int) -> Conversation:
    """Restrict conversation access to owner/renter."""
    return get_object_or_404(
        Conversation.objects.select_related("booking", "booking__equipment"),
        Q(owner=user) | Q(renter=user),
        pk=pk,
    )


@api_view(["GET"])
@permission_classes([IsAuthenticated])
def chat_list(request):
    """Return all conversations for the authenticated user."""
    user = request.user
    qs = Conversation.objects.filter(Q(owner=user) | Q(renter=user)).select_related(
        "booking",
        "booking__equipment",
    )
    return Response(ConversationSerializer(qs, many=True).data)


@api_view(["GET"])
@permission_classes([IsAuthenticated])
def chat_detail(request, pk: int):
    conv = _get_user_conversation_or_404(request.user, pk)
    return Response(ConversationDetailSerializer(conv).data)


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def chat_send_message(request, pk: int):
    """Create a user-authored chat entry."""
    conv = _get_user_conversation_or_404(request.user, pk)
    if not conv.is_active or conv.booking.status in CLOSED_BOOKING_STATUSES:
        return Response(
            {"detail": "Chat is closed for this booking."},
            status=status.HTTP_400_BAD_REQUEST,
        )

    serializer = SendMessageSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    msg = create_user_message(conv, sender=request.user, text=serializer.validated_data["text"])
    return Response(MessageSerializer(msg).data, status=status.HTTP_201_CREATED)


@api_view(["GET"])
@permission_classes([IsAuthenticated])
def chat_for_booking(request, booking_id):
    """Open (or lazily create) the conversation attached to a booking."""
    booking = get_object_or_404(
        BookingRequest.objects.select_related("equipment"),
        Q(equipment__owner=request.user) | Q(renter=request.user),
        pk=booking_id,
    )
    conv = get_or_create_booking_conversation(booking)
    return Response(ConversationDetailSerializer(conv).data)
