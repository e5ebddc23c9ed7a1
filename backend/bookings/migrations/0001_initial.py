import uuid
from decimal import Decimal

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models

STATUS_CHOICES = [
    ("pending", "pending"),
    ("approved", "approved"),
    ("declined", "declined"),
    ("cancelled", "cancelled"),
    ("active", "active"),
    ("completed", "completed"),
]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("equipment", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="BookingRequest",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4, editable=False, primary_key=True, serialize=False
                    ),
                ),
                ("start_date", models.DateField()),
                ("end_date", models.DateField(help_text="Last rental day, inclusive.")),
                ("total_amount", models.DecimalField(decimal_places=2, max_digits=10)),
                ("message", models.TextField(blank=True, default="")),
                (
                    "status",
                    models.CharField(choices=STATUS_CHOICES, default="pending", max_length=16),
                ),
                (
                    "damage_deposit_amount",
                    models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=10),
                ),
                (
                    "insurance_type",
                    models.CharField(
                        choices=[("none", "none"), ("basic", "basic"), ("premium", "premium")],
                        default="none",
                        max_length=16,
                    ),
                ),
                (
                    "insurance_cost",
                    models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=10),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("activated_at", models.DateTimeField(blank=True, null=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "equipment",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="booking_requests",
                        to="equipment.equipment",
                    ),
                ),
                (
                    "renter",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="booking_requests",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["equipment", "status", "start_date", "end_date"],
                        name="bookings_bo_equipme_8c1f2a_idx",
                    ),
                    models.Index(fields=["renter", "status"], name="bookings_bo_renter__4d7e90_idx"),
                    models.Index(
                        fields=["status", "created_at"], name="bookings_bo_status_b3a511_idx"
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("start_date__lte", models.F("end_date"))),
                        name="booking_request_start_not_after_end",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="BookingHistory",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                (
                    "old_status",
                    models.CharField(blank=True, choices=STATUS_CHOICES, max_length=16, null=True),
                ),
                ("new_status", models.CharField(choices=STATUS_CHOICES, max_length=16)),
                (
                    "actor",
                    models.CharField(
                        choices=[("renter", "renter"), ("owner", "owner"), ("system", "system")],
                        max_length=16,
                    ),
                ),
                ("reason", models.CharField(blank=True, default="", max_length=255)),
                ("metadata", models.JSONField(blank=True, default=dict)),
                ("changed_at", models.DateTimeField(auto_now_add=True)),
                (
                    "booking",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="history",
                        to="bookings.bookingrequest",
                    ),
                ),
                (
                    "changed_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="booking_history_entries",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["changed_at", "id"],
                "verbose_name_plural": "booking history",
            },
        ),
    ]
