from django.urls import path

from .api import (
    booking_payment_status,
    claim_booking_deposit,
    create_payment_intent,
    release_booking_deposit,
)
from .webhooks import stripe_webhook

app_name = "payments"

urlpatterns = [
    path("intents/", create_payment_intent, name="create_payment_intent"),
    path("stripe/webhook/", stripe_webhook, name="stripe_webhook"),
    path("bookings/<uuid:booking_id>/", booking_payment_status, name="booking_payment"),
    path(
        "bookings/<uuid:booking_id>/deposit/release/",
        release_booking_deposit,
        name="release_deposit",
    ),
    path(
        "bookings/<uuid:booking_id>/deposit/claim/",
        claim_booking_deposit,
        name="claim_deposit",
    ),
]
