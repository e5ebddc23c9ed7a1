"""Stripe helpers for booking payments, refunds and webhook verification."""

from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Mapping

import stripe
from django.conf import settings

logger = logging.getLogger(__name__)
IDEMPOTENCY_VERSION = "v2"
AUTOMATIC_PAYMENT_METHODS_CONFIG = {"enabled": True}


class PaymentProviderError(Exception):
    """Base class for errors talking to the payment provider."""


class StripeConfigurationError(PaymentProviderError):
    """Stripe is not configured correctly in the environment."""


class StripeTransientError(PaymentProviderError):
    """Temporary Stripe/API issue that should be retried."""


class StripePaymentError(PaymentProviderError):
    """Permanent payment failure reported by Stripe."""


def _get_stripe_api_key() -> str:
    """Return the configured Stripe API key or raise if missing."""
    api_key = getattr(settings, "STRIPE_SECRET_KEY", "")
    if not api_key:
        raise StripeConfigurationError("Stripe secret key not configured.")
    return api_key


def _configure_stripe() -> None:
    stripe.api_key = _get_stripe_api_key()
    stripe.max_network_retries = getattr(settings, "STRIPE_MAX_NETWORK_RETRIES", 2)


def _to_cents(amount: Decimal) -> int:
    """Convert Decimal dollars to integer cents, rounding to the nearest cent."""
    cents = (amount * Decimal("100")).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(cents)


def _from_cents(cents: int | None) -> Decimal:
    return (Decimal(int(cents or 0)) / Decimal("100")).quantize(Decimal("0.01"))


def _handle_stripe_error(exc: stripe.error.StripeError) -> None:
    """Map Stripe SDK errors onto internal exception types."""
    if isinstance(exc, stripe.error.CardError):
        message = exc.user_message or "Your card was declined."
        raise StripePaymentError(message) from exc
    if isinstance(
        exc,
        (
            stripe.error.RateLimitError,
            stripe.error.APIConnectionError,
            stripe.error.APIError,
        ),
    ):
        raise StripeTransientError("Temporary Stripe error, please retry.") from exc
    if isinstance(exc, (stripe.error.AuthenticationError, stripe.error.PermissionError)):
        raise StripeConfigurationError("Stripe credentials are invalid or unauthorized.") from exc
    if isinstance(exc, stripe.error.InvalidRequestError):
        raise StripePaymentError(exc.user_message or "Invalid payment request.") from exc
    raise StripePaymentError(exc.user_message or "Stripe payment failure.") from exc


def default_currency() -> str:
    return (getattr(settings, "STRIPE_CURRENCY", "usd") or "usd").lower()


def _obj_value(obj: Any, field: str, default: Any = None) -> Any:
    """Read a field from a Stripe object or a plain dict payload."""
    if obj is None:
        return default
    if isinstance(obj, Mapping):
        return obj.get(field, default)
    return getattr(obj, field, default)


def charge_id_from_intent(intent: Any) -> str:
    """Return the charge id of a PaymentIntent payload, old or new API shape."""
    latest = _obj_value(intent, "latest_charge")
    if isinstance(latest, str) and latest:
        return latest
    if latest is not None:
        latest_id = _obj_value(latest, "id")
        if latest_id:
            return str(latest_id)
    charges = _obj_value(intent, "charges") or {}
    data = _obj_value(charges, "data") or []
    if data:
        return str(_obj_value(data[0], "id", "") or "")
    return ""


def failure_reason_from_intent(intent: Any) -> str:
    error = _obj_value(intent, "last_payment_error") or {}
    return str(
        _obj_value(error, "message")
        or _obj_value(error, "code")
        or "Payment failed."
    )


def create_booking_payment_intent(
    *,
    amount: Decimal,
    metadata: dict[str, str],
    idempotency_key: str,
    customer_email: str = "",
) -> Any:
    """Create an automatic-capture PaymentIntent carrying booking metadata."""
    if amount <= Decimal("0"):
        raise StripePaymentError("Payment amount must be greater than zero.")
    _configure_stripe()
    env_label = getattr(settings, "STRIPE_ENV", "dev") or "dev"
    try:
        return stripe.PaymentIntent.create(
            amount=_to_cents(amount),
            currency=default_currency(),
            automatic_payment_methods={**AUTOMATIC_PAYMENT_METHODS_CONFIG},
            receipt_email=customer_email or None,
            metadata={**metadata, "env": env_label},
            idempotency_key=idempotency_key,
        )
    except stripe.error.StripeError as exc:
        _handle_stripe_error(exc)


def refund_payment_intent(
    payment_intent_id: str,
    *,
    idempotency_key: str,
    amount: Decimal | None = None,
    reason: str = "requested_by_customer",
    metadata: dict[str, str] | None = None,
) -> str:
    """
    Refund a captured PaymentIntent, fully or for `amount`; returns the refund id.

    Safe to call repeatedly with the same idempotency key.
    """
    _configure_stripe()
    params: dict[str, Any] = {
        "payment_intent": payment_intent_id,
        "reason": reason,
        "metadata": metadata or {},
        "idempotency_key": idempotency_key,
    }
    if amount is not None:
        if amount <= Decimal("0"):
            raise StripePaymentError("Refund amount must be greater than zero.")
        params["amount"] = _to_cents(amount)
    try:
        refund = stripe.Refund.create(**params)
    except stripe.error.StripeError as exc:
        _handle_stripe_error(exc)
    refund_id = _obj_value(refund, "id", "") or ""
    logger.info(
        "stripe: refund created",
        extra={"payment_intent_id": payment_intent_id, "refund_id": refund_id},
    )
    return refund_id


def construct_webhook_event(payload: bytes, sig_header: str) -> Any:
    """
    Verify a webhook signature and parse the event.

    Raises ValueError for malformed payloads and
    stripe.error.SignatureVerificationError for bad signatures.
    """
    endpoint_secret = getattr(settings, "STRIPE_WEBHOOK_SECRET", "")
    if not endpoint_secret:
        raise StripeConfigurationError("Stripe webhook secret not configured.")
    return stripe.Webhook.construct_event(
        payload=payload,
        sig_header=sig_header,
        secret=endpoint_secret,
    )
