"""Database models for rental booking requests."""

from __future__ import annotations

import uuid
from decimal import Decimal

from django.conf import settings
from django.db import models
from django.db.models import F, Q

from equipment.models import Equipment


class BookingRequest(models.Model):
    """A renter's reservation of one piece of equipment for an inclusive date range."""

    class Status(models.TextChoices):
        PENDING = "pending", "pending"
        APPROVED = "approved", "approved"
        DECLINED = "declined", "declined"
        CANCELLED = "cancelled", "cancelled"
        ACTIVE = "active", "active"
        COMPLETED = "completed", "completed"

    class Insurance(models.TextChoices):
        NONE = "none", "none"
        BASIC = "basic", "basic"
        PREMIUM = "premium", "premium"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    equipment = models.ForeignKey(
        Equipment,
        related_name="booking_requests",
        on_delete=models.PROTECT,
    )
    renter = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="booking_requests",
        on_delete=models.PROTECT,
    )
    start_date = models.DateField()
    end_date = models.DateField(help_text="Last rental day, inclusive.")
    total_amount = models.DecimalField(max_digits=10, decimal_places=2)
    message = models.TextField(blank=True, default="")
    status = models.CharField(
        max_length=16,
        choices=Status.choices,
        default=Status.PENDING,
    )
    damage_deposit_amount = models.DecimalField(
        max_digits=10, decimal_places=2, default=Decimal("0.00")
    )
    insurance_type = models.CharField(
        max_length=16,
        choices=Insurance.choices,
        default=Insurance.NONE,
    )
    insurance_cost = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0.00"))
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    activated_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(
                fields=["equipment", "status", "start_date", "end_date"],
                name="bookings_bo_equipme_8c1f2a_idx",
            ),
            models.Index(fields=["renter", "status"], name="bookings_bo_renter__4d7e90_idx"),
            models.Index(fields=["status", "created_at"], name="bookings_bo_status_b3a511_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(start_date__lte=F("end_date")),
                name="booking_request_start_not_after_end",
            ),
        ]

    def __str__(self) -> str:
        """Return a human-readable representation."""
        return f"BookingRequest {self.pk} for {self.equipment_id} ({self.status})"

    @property
    def owner_id(self) -> int:
        return self.equipment.owner_id

    @property
    def owner(self):
        return self.equipment.owner

    @property
    def days(self) -> int:
        """Number of rental days; both endpoints count."""
        return (self.end_date - self.start_date).days + 1

    def is_terminal(self) -> bool:
        return self.status in {
            self.Status.DECLINED,
            self.Status.CANCELLED,
            self.Status.COMPLETED,
        }


class BookingHistory(models.Model):
    """Append-only audit trail of booking status changes."""

    class Actor(models.TextChoices):
        RENTER = "renter", "renter"
        OWNER = "owner", "owner"
        SYSTEM = "system", "system"

    booking = models.ForeignKey(
        BookingRequest,
        related_name="history",
        on_delete=models.CASCADE,
    )
    old_status = models.CharField(
        max_length=16,
        choices=BookingRequest.Status.choices,
        null=True,
        blank=True,
    )
    new_status = models.CharField(max_length=16, choices=BookingRequest.Status.choices)
    actor = models.CharField(max_length=16, choices=Actor.choices)
    changed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="booking_history_entries",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
    )
    reason = models.CharField(max_length=255, blank=True, default="")
    metadata = models.JSONField(default=dict, blank=True)
    changed_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["changed_at", "id"]
        verbose_name_plural = "booking history"

    def __str__(self) -> str:
        return f"{self.booking_id}: {self.old_status or '-'} -> {self.new_status}"
