"""Map domain and payment-provider errors onto API responses."""

from __future__ import annotations

import logging

from django.core.exceptions import ValidationError
from rest_framework import status
from rest_framework.response import Response

from bookings.exceptions import DatesUnavailable
from payments.exceptions import InvalidEscrowTransition
from payments.stripe_api import (
    StripeConfigurationError,
    StripePaymentError,
    StripeTransientError,
)

logger = logging.getLogger(__name__)


def error_response(exc: Exception) -> Response | None:
    """Return the response for a known error, or None to let it propagate."""
    if isinstance(exc, DatesUnavailable):
        return Response(exc.message_dict, status=status.HTTP_409_CONFLICT)
    if isinstance(exc, ValidationError):
        return Response(exc.message_dict, status=status.HTTP_400_BAD_REQUEST)
    if isinstance(exc, InvalidEscrowTransition):
        return Response({exc.field: [str(exc)]}, status=status.HTTP_409_CONFLICT)
    if isinstance(exc, StripeTransientError):
        return Response(
            {"detail": "Temporary payment issue; please retry."},
            status=status.HTTP_503_SERVICE_UNAVAILABLE,
        )
    if isinstance(exc, StripePaymentError):
        message = str(exc) or "Payment could not be processed."
        return Response({"detail": message}, status=status.HTTP_400_BAD_REQUEST)
    if isinstance(exc, StripeConfigurationError):
        logger.exception("Stripe configuration error")
        return Response(
            {"detail": "Payment processor is not configured; please try again later."},
            status=status.HTTP_503_SERVICE_UNAVAILABLE,
        )
    return None


HANDLED_ERRORS = (
    ValidationError,
    InvalidEscrowTransition,
    StripeTransientError,
    StripePaymentError,
    StripeConfigurationError,
)
