from django.contrib import admin

from .models import Payment, ReconciliationCase


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = (
        "stripe_payment_intent_id",
        "booking",
        "total_amount",
        "payment_status",
        "escrow_status",
        "deposit_status",
        "payout_status",
    )
    list_filter = ("payment_status", "escrow_status", "deposit_status")
    search_fields = ("stripe_payment_intent_id", "stripe_charge_id")


@admin.register(ReconciliationCase)
class ReconciliationCaseAdmin(admin.ModelAdmin):
    list_display = ("stripe_payment_intent_id", "reason", "status", "amount", "created_at")
    list_filter = ("reason", "status")
    search_fields = ("stripe_payment_intent_id",)
