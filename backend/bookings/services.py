"""Write paths for booking requests: creation and status transitions."""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from django.db import transaction
from django.shortcuts import get_object_or_404
from django.utils import timezone

from chat.models import Conversation, Message, create_system_message
from core.redis import push_event_to_users
from equipment.models import Equipment
from payments.pricing import compute_breakdown

from .domain import (
    assert_transition,
    ensure_no_conflict,
    ensure_not_in_past,
    require_capability,
    validate_booking_dates,
)
from .exceptions import EquipmentUnavailable, SelfBookingNotAllowed
from .models import BookingHistory, BookingRequest

logger = logging.getLogger(__name__)

Status = BookingRequest.Status
Actor = BookingHistory.Actor

TIMEOUT_REASON = "timeout"


def record_history(
    booking: BookingRequest,
    *,
    old_status: str | None,
    new_status: str,
    actor: str,
    changed_by=None,
    reason: str = "",
    metadata: dict[str, Any] | None = None,
) -> BookingHistory:
    return BookingHistory.objects.create(
        booking=booking,
        old_status=old_status,
        new_status=new_status,
        actor=actor,
        changed_by=changed_by,
        reason=reason or "",
        metadata=metadata or {},
    )


def _push_status_event(booking: BookingRequest, old_status: str | None) -> None:
    payload = {
        "booking_id": str(booking.id),
        "equipment_id": booking.equipment_id,
        "old_status": old_status,
        "status": booking.status,
    }
    push_event_to_users(
        [booking.renter_id, booking.equipment.owner_id],
        "booking:status_changed",
        payload,
    )


def lock_equipment(equipment_id: int) -> Equipment:
    """Take the per-equipment write lock that serializes calendar changes."""
    return Equipment.objects.select_for_update().get(pk=equipment_id)


def check_request_preconditions(
    *, renter, equipment: Equipment, start_date: date, end_date: date
) -> None:
    """Optimistic checks shared by request creation and intent issuance."""
    if equipment.owner_id == renter.id:
        raise SelfBookingNotAllowed()
    if not equipment.is_available:
        raise EquipmentUnavailable()
    validate_booking_dates(start_date, end_date)
    ensure_not_in_past(start_date)
    ensure_no_conflict(equipment, start_date, end_date)


def create_booking_request(
    *,
    renter,
    equipment_id: int,
    start_date: date,
    end_date: date,
    total_amount: Decimal,
    message: str = "",
    insurance_type: str = BookingRequest.Insurance.NONE,
    insurance_cost: Decimal = Decimal("0.00"),
    damage_deposit_amount: Decimal = Decimal("0.00"),
) -> BookingRequest:
    """
    Create a `pending` request with no upfront charge.

    The conflict check runs once optimistically and again under the equipment
    lock right before the insert.
    """
    equipment = get_object_or_404(Equipment, pk=equipment_id)
    check_request_preconditions(
        renter=renter, equipment=equipment, start_date=start_date, end_date=end_date
    )
    breakdown = compute_breakdown(total_amount, insurance_cost, damage_deposit_amount)

    with transaction.atomic():
        lock_equipment(equipment.pk)
        ensure_no_conflict(equipment, start_date, end_date)
        booking = BookingRequest.objects.create(
            equipment=equipment,
            renter=renter,
            start_date=start_date,
            end_date=end_date,
            total_amount=breakdown.total,
            message=message or "",
            status=Status.PENDING,
            insurance_type=insurance_type,
            insurance_cost=breakdown.insurance,
            damage_deposit_amount=breakdown.deposit,
        )
        record_history(
            booking,
            old_status=None,
            new_status=Status.PENDING,
            actor=Actor.RENTER,
            changed_by=renter,
            reason="requested",
        )
        transaction.on_commit(lambda: _push_status_event(booking, None))

    logger.info(
        "bookings: created pending request",
        extra={"booking_id": str(booking.id), "equipment_id": equipment.pk},
    )
    return booking


def transition_booking(
    booking_id: UUID | str,
    target: str,
    *,
    actor: str,
    changed_by=None,
    reason: str = "",
    metadata: Optional[dict[str, Any]] = None,
    recheck_availability: bool = False,
) -> BookingRequest:
    """
    Move a booking to `target`, writing the status and its history entry together.

    The booking row is locked for the duration so concurrent transitions see
    each other's result. With `recheck_availability` the equipment lock is taken
    first and the calendar re-validated, as any path into a blocking status must.
    """
    with transaction.atomic():
        if recheck_availability:
            equipment_id = (
                BookingRequest.objects.filter(pk=booking_id)
                .values_list("equipment_id", flat=True)
                .first()
            )
            if equipment_id is None:
                raise BookingRequest.DoesNotExist(booking_id)
            lock_equipment(equipment_id)

        booking = BookingRequest.objects.select_for_update().get(pk=booking_id)
        assert_transition(booking, target)
        if recheck_availability:
            ensure_no_conflict(
                booking.equipment_id,
                booking.start_date,
                booking.end_date,
                exclude_booking_id=booking.pk,
            )

        old_status = booking.status
        booking.status = target
        update_fields = ["status", "updated_at"]
        now = timezone.now()
        if target == Status.ACTIVE:
            booking.activated_at = now
            update_fields.append("activated_at")
        elif target == Status.COMPLETED:
            booking.completed_at = now
            update_fields.append("completed_at")
        booking.save(update_fields=update_fields)

        record_history(
            booking,
            old_status=old_status,
            new_status=target,
            actor=actor,
            changed_by=changed_by,
            reason=reason,
            metadata=metadata,
        )
        transaction.on_commit(lambda: _push_status_event(booking, old_status))

    logger.info(
        "bookings: %s -> %s",
        old_status,
        target,
        extra={"booking_id": str(booking.id), "actor": actor, "reason": reason},
    )
    return booking


def approve_booking(booking: BookingRequest, user) -> BookingRequest:
    require_capability(
        booking, user, ("owner",), "Only the equipment owner can approve this booking."
    )
    return transition_booking(
        booking.pk,
        Status.APPROVED,
        actor=Actor.OWNER,
        changed_by=user,
        reason="approved by owner",
        recheck_availability=True,
    )


def decline_booking(booking: BookingRequest, user, *, reason: str = "") -> BookingRequest:
    require_capability(
        booking, user, ("owner",), "Only the equipment owner can decline this booking."
    )
    return transition_booking(
        booking.pk,
        Status.DECLINED,
        actor=Actor.OWNER,
        changed_by=user,
        reason=reason or "declined by owner",
    )


def cancel_booking(booking: BookingRequest, user, *, reason: str = "") -> BookingRequest:
    """
    Cancel a pending or approved booking.

    Held escrow is refunded after the cancellation commits; the refund task
    retries until the payment converges to `refunded`.
    """
    capability = require_capability(
        booking,
        user,
        ("renter", "owner"),
        "Only booking participants can cancel this booking.",
    )
    booking = transition_booking(
        booking.pk,
        Status.CANCELLED,
        actor=capability,
        changed_by=user,
        reason=reason or f"cancelled by {capability}",
    )
    if Conversation.objects.filter(booking=booking).exists():
        create_system_message(
            booking,
            Message.SYSTEM_BOOKING_CANCELLED,
            f"Booking cancelled by the {capability}.",
            close_chat=True,
        )

    from payments.tasks import refund_cancelled_booking

    booking_id = str(booking.pk)
    transaction.on_commit(lambda: refund_cancelled_booking.delay(booking_id))
    return booking


def activate_booking(booking: BookingRequest, user) -> BookingRequest:
    """Record equipment handoff (pickup inspection passed)."""
    capability = require_capability(
        booking,
        user,
        ("owner", "renter"),
        "Only booking participants can confirm pickup.",
    )
    return transition_booking(
        booking.pk,
        Status.ACTIVE,
        actor=capability,
        changed_by=user,
        reason="pickup confirmed",
    )


def complete_booking(booking: BookingRequest, user) -> BookingRequest:
    """Record equipment return and start releasing the escrowed rental to the owner."""
    capability = require_capability(
        booking,
        user,
        ("owner", "renter"),
        "Only booking participants can confirm return.",
    )
    booking = transition_booking(
        booking.pk,
        Status.COMPLETED,
        actor=capability,
        changed_by=user,
        reason="return confirmed",
    )

    from payments.tasks import release_escrow_for_booking

    booking_id = str(booking.pk)
    transaction.on_commit(lambda: release_escrow_for_booking.delay(booking_id))
    return booking


def reclaim_stale_booking(booking_id: UUID | str, *, cutoff) -> bool:
    """
    Cancel one abandoned pending request; returns False when it no longer qualifies.

    Qualification is re-read under the row lock so a concurrent approval or
    payment wins over the sweep.
    """
    from payments.models import Payment

    with transaction.atomic():
        booking = BookingRequest.objects.select_for_update().get(pk=booking_id)
        if booking.status != Status.PENDING or booking.created_at >= cutoff:
            return False
        if Payment.objects.filter(booking_id=booking.pk).exists():
            return False
        transition_booking(
            booking.pk,
            Status.CANCELLED,
            actor=Actor.SYSTEM,
            reason=TIMEOUT_REASON,
            metadata={"created_at": booking.created_at.isoformat()},
        )
    return True
