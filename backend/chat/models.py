"""Booking conversations and the system messages posted into them."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Tuple

from django.conf import settings
from django.db import IntegrityError, models, transaction
from django.db.models import Q
from django.utils import timezone

from core.redis import push_event_to_users

if TYPE_CHECKING:  # pragma: no cover
    from bookings.models import BookingRequest
    from users.models import User

logger = logging.getLogger(__name__)


class Conversation(models.Model):
    """One chat thread per booking between owner and renter."""

    booking = models.OneToOneField(
        "bookings.BookingRequest",
        on_delete=models.CASCADE,
        related_name="conversation",
    )
    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="owner_conversations",
    )
    renter = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="renter_conversations",
    )
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"Conversation(b={self.booking_id}, active={self.is_active})"

    def participant_ids(self) -> tuple[int, int]:
        return (self.owner_id, self.renter_id)


class Message(models.Model):
    """Individual chat message, either user-generated or system-generated."""

    MESSAGE_TYPE_USER = "user"
    MESSAGE_TYPE_SYSTEM = "system"
    MESSAGE_TYPE_CHOICES = [
        (MESSAGE_TYPE_USER, "User"),
        (MESSAGE_TYPE_SYSTEM, "System"),
    ]

    SYSTEM_PAYMENT_CONFIRMED = "PAYMENT_CONFIRMED"
    SYSTEM_BOOKING_CANCELLED = "BOOKING_CANCELLED"

    SYSTEM_KIND_CHOICES = [
        (SYSTEM_PAYMENT_CONFIRMED, "Payment confirmed"),
        (SYSTEM_BOOKING_CANCELLED, "Booking cancelled"),
    ]

    conversation = models.ForeignKey(
        Conversation,
        on_delete=models.CASCADE,
        related_name="messages",
    )
    sender = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="chat_messages",
    )
    message_type = models.CharField(
        max_length=10,
        choices=MESSAGE_TYPE_CHOICES,
        default=MESSAGE_TYPE_USER,
    )
    system_kind = models.CharField(
        max_length=32,
        choices=SYSTEM_KIND_CHOICES,
        null=True,
        blank=True,
    )
    text = models.TextField(blank=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["created_at", "id"]
        constraints = [
            models.UniqueConstraint(
                fields=["conversation", "system_kind"],
                condition=Q(system_kind="PAYMENT_CONFIRMED"),
                name="chat_single_payment_confirmation",
            ),
        ]

    def __str__(self) -> str:
        return (
            "Message("
            f"conv={self.conversation_id}, "
            f"type={self.message_type}, "
            f"system={self.system_kind}"
            ")"
        )


def get_or_create_booking_conversation(booking: "BookingRequest") -> Conversation:
    """Return the booking's conversation, creating it on first access."""
    conv, _ = Conversation.objects.get_or_create(
        booking=booking,
        defaults={
            "owner_id": booking.equipment.owner_id,
            "renter_id": booking.renter_id,
        },
    )
    return conv


def _push_chat_event_for_conversation(conv: Conversation, msg: Message) -> None:
    """Send a Redis event to both participants once the message is committed."""
    payload = {
        "conversation_id": conv.id,
        "booking_id": str(conv.booking_id),
        "message": {
            "id": msg.id,
            "sender_id": msg.sender_id,
            "message_type": msg.message_type,
            "system_kind": msg.system_kind,
            "text": msg.text,
            "created_at": msg.created_at.isoformat(),
        },
    }
    transaction.on_commit(
        lambda: push_event_to_users(conv.participant_ids(), "chat:new_message", payload)
    )


def format_payment_confirmation(booking: "BookingRequest", renter_name: str) -> str:
    """Canonical text of the payment-confirmed system message."""
    return (
        f"Payment confirmed! {renter_name} booked \"{booking.equipment.title}\" "
        f"from {booking.start_date:%b %d, %Y} to {booking.end_date:%b %d, %Y} "
        f"(${booking.total_amount:.2f} total)."
    )


def create_system_message(
    booking: "BookingRequest",
    system_kind: str,
    text: str,
    *,
    close_chat: bool = False,
) -> Tuple[Conversation, Message]:
    """Create a system-generated chat entry for the booking."""
    conv = get_or_create_booking_conversation(booking)
    if close_chat and conv.is_active:
        conv.is_active = False
        conv.save(update_fields=["is_active"])
    msg = Message.objects.create(
        conversation=conv,
        sender=None,
        message_type=Message.MESSAGE_TYPE_SYSTEM,
        system_kind=system_kind,
        text=text,
    )
    _push_chat_event_for_conversation(conv, msg)
    return conv, msg


def ensure_booking_confirmation_message(booking: "BookingRequest") -> Tuple[Conversation, Message]:
    """
    Create the conversation and its payment-confirmed message if either is missing.

    Idempotent: a conditional unique constraint allows at most one such message
    per conversation, so concurrent callers converge on the same row.
    """
    conv = get_or_create_booking_conversation(booking)
    existing = conv.messages.filter(system_kind=Message.SYSTEM_PAYMENT_CONFIRMED).first()
    if existing is not None:
        return conv, existing

    renter = booking.renter
    text = format_payment_confirmation(booking, renter.get_full_name().strip() or renter.username)
    try:
        with transaction.atomic():
            msg = Message.objects.create(
                conversation=conv,
                sender=None,
                message_type=Message.MESSAGE_TYPE_SYSTEM,
                system_kind=Message.SYSTEM_PAYMENT_CONFIRMED,
                text=text,
            )
    except IntegrityError:
        logger.info("chat: confirmation already posted for booking %s", booking.pk)
        msg = conv.messages.get(system_kind=Message.SYSTEM_PAYMENT_CONFIRMED)
        return conv, msg
    _push_chat_event_for_conversation(conv, msg)
    return conv, msg


def create_user_message(
    conversation: Conversation,
    sender: "User",
    text: str,
) -> Message:
    """Create a user-authored chat message and emit events."""
    msg = Message.objects.create(
        conversation=conversation,
        sender=sender,
        message_type=Message.MESSAGE_TYPE_USER,
        text=text,
    )
    _push_chat_event_for_conversation(conversation, msg)
    return msg
