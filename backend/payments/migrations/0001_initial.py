import uuid
from decimal import Decimal

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


def money(**kwargs):
    kwargs.setdefault("default", Decimal("0.00"))
    return models.DecimalField(decimal_places=2, max_digits=10, **kwargs)


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("bookings", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Payment",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4, editable=False, primary_key=True, serialize=False
                    ),
                ),
                ("stripe_payment_intent_id", models.CharField(max_length=120, unique=True)),
                ("stripe_charge_id", models.CharField(blank=True, default="", max_length=120)),
                ("stripe_refund_id", models.CharField(blank=True, default="", max_length=120)),
                ("subtotal", money()),
                ("rental_amount", money()),
                ("service_fee", money()),
                ("tax", money()),
                ("insurance_amount", money()),
                ("deposit_amount", money()),
                ("total_amount", money()),
                ("currency", models.CharField(default="usd", max_length=3)),
                ("escrow_amount", money()),
                ("owner_payout_amount", money()),
                ("refund_amount", money(blank=True, default=None, null=True)),
                ("refund_reason", models.CharField(blank=True, default="", max_length=255)),
                (
                    "payment_status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("succeeded", "Succeeded"),
                            ("failed", "Failed"),
                            ("refunded", "Refunded"),
                        ],
                        default="pending",
                        max_length=16,
                    ),
                ),
                (
                    "escrow_status",
                    models.CharField(
                        choices=[
                            ("held", "Held"),
                            ("releasing", "Releasing"),
                            ("released", "Released"),
                            ("refunded", "Refunded"),
                        ],
                        default="held",
                        max_length=16,
                    ),
                ),
                (
                    "deposit_status",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("held", "Held"),
                            ("releasing", "Releasing"),
                            ("released", "Released"),
                            ("claimed", "Claimed"),
                            ("refunded", "Refunded"),
                        ],
                        max_length=16,
                        null=True,
                    ),
                ),
                (
                    "payout_status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                        ],
                        default="pending",
                        max_length=16,
                    ),
                ),
                ("failure_reason", models.TextField(blank=True, default="")),
                ("escrow_released_at", models.DateTimeField(blank=True, null=True)),
                ("deposit_released_at", models.DateTimeField(blank=True, null=True)),
                ("deposit_claimed_at", models.DateTimeField(blank=True, null=True)),
                ("payout_processed_at", models.DateTimeField(blank=True, null=True)),
                ("refunded_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "booking",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payment",
                        to="bookings.bookingrequest",
                    ),
                ),
                (
                    "owner",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payments_received",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "renter",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payments_made",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["escrow_status"], name="payments_pa_escrow__5e21c7_idx"),
                    models.Index(fields=["deposit_status"], name="payments_pa_deposit_9a04d3_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="ReconciliationCase",
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
                ("stripe_payment_intent_id", models.CharField(max_length=120, unique=True)),
                ("stripe_charge_id", models.CharField(blank=True, default="", max_length=120)),
                ("stripe_refund_id", models.CharField(blank=True, default="", max_length=120)),
                ("equipment_id", models.BigIntegerField(blank=True, null=True)),
                ("renter_id", models.BigIntegerField(blank=True, null=True)),
                ("start_date", models.DateField(blank=True, null=True)),
                ("end_date", models.DateField(blank=True, null=True)),
                ("amount", money()),
                ("currency", models.CharField(default="usd", max_length=3)),
                (
                    "reason",
                    models.CharField(
                        choices=[
                            ("dates_unavailable", "Dates unavailable"),
                            ("equipment_missing", "Equipment missing"),
                            ("booking_not_payable", "Booking not payable"),
                            ("invalid_metadata", "Invalid metadata"),
                        ],
                        max_length=32,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("open", "Open"),
                            ("refunded", "Refunded"),
                            ("refund_failed", "Refund failed"),
                            ("resolved", "Resolved"),
                        ],
                        default="open",
                        max_length=16,
                    ),
                ),
                ("metadata", models.JSONField(blank=True, default=dict)),
                ("last_error", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("resolved_at", models.DateTimeField(blank=True, null=True)),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
    ]
