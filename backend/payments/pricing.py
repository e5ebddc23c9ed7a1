"""Split a charged total into rental, service fee, insurance and deposit."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from django.conf import settings

from bookings.exceptions import InvalidAmount

_CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def q2(value: Decimal) -> Decimal:
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


def to_decimal(value: object, field_name: str) -> Decimal:
    """Parse a money value, rejecting NaN and infinities."""
    if value is None or value == "":
        return ZERO
    try:
        parsed = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise InvalidAmount(f"Invalid {field_name}.", field=field_name) from exc
    if not parsed.is_finite():
        raise InvalidAmount(f"Invalid {field_name}.", field=field_name)
    return parsed


@dataclass(frozen=True)
class MoneyBreakdown:
    total: Decimal
    insurance: Decimal
    deposit: Decimal
    subtotal: Decimal
    rental: Decimal
    service_fee: Decimal
    tax: Decimal = ZERO

    def as_metadata(self) -> dict[str, str]:
        return {
            "total_amount": str(self.total),
            "rental_amount": str(self.rental),
            "service_fee": str(self.service_fee),
            "insurance_cost": str(self.insurance),
            "damage_deposit_amount": str(self.deposit),
        }


def service_fee_rate() -> Decimal:
    return Decimal(str(getattr(settings, "BOOKING_SERVICE_FEE_RATE", "0.05")))


def compute_breakdown(total, insurance_cost=ZERO, deposit=ZERO) -> MoneyBreakdown:
    """
    Reverse a customer-facing total into its components.

    The service fee is folded into the subtotal, so
    rental = subtotal / (1 + rate) and fee = subtotal - rental. Every step is
    rounded half-up to cents; the parts add back to `total` within one cent.
    """
    total = q2(to_decimal(total, "total_amount"))
    insurance = q2(to_decimal(insurance_cost, "insurance_cost"))
    deposit = q2(to_decimal(deposit, "damage_deposit_amount"))

    if total <= ZERO:
        raise InvalidAmount("Total amount must be greater than zero.")
    if insurance < ZERO or deposit < ZERO:
        raise InvalidAmount("Insurance and deposit cannot be negative.")

    subtotal = q2(total - insurance - deposit)
    if subtotal < ZERO:
        raise InvalidAmount("Insurance and deposit exceed the total amount.")

    rental = q2(subtotal / (Decimal("1") + service_fee_rate()))
    service_fee = q2(subtotal - rental)
    return MoneyBreakdown(
        total=total,
        insurance=insurance,
        deposit=deposit,
        subtotal=subtotal,
        rental=rental,
        service_fee=service_fee,
    )
