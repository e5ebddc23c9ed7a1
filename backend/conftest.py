"""Shared pytest configuration and fixtures."""

from __future__ import annotations

from decimal import Decimal
from types import SimpleNamespace
from typing import Callable

import pytest
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient

from bookings.models import BookingRequest
from core import redis as core_redis
from equipment.models import Equipment
from payments import stripe_api
from payments.models import Payment

User = get_user_model()


class FakeRedis:
    """Records XADD calls instead of talking to a server."""

    def __init__(self):
        self.entries: list[tuple[str, dict]] = []

    def xadd(self, key, fields, maxlen=None, approximate=True):
        self.entries.append((key, fields))
        return f"{len(self.entries)}-0".encode()

    def events_for(self, user_id: int) -> list[str]:
        key = core_redis.user_stream_key(user_id)
        return [fields["type"] for stream, fields in self.entries if stream == key]


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch):
    client = FakeRedis()
    monkeypatch.setattr(core_redis, "get_redis_client", lambda: client)
    return client


@pytest.fixture
def api_client():
    """DRF API client for request/response helpers."""
    return APIClient()


def auth(user) -> APIClient:
    client = APIClient()
    resp = client.post(
        "/api/users/token/",
        {"username": user.username, "password": "testpass"},
        format="json",
    )
    token = resp.data["access"]
    client.credentials(HTTP_AUTHORIZATION=f"Bearer {token}")
    return client


@pytest.fixture
def auth_client() -> Callable[..., APIClient]:
    return auth


def _create_user(username: str, **extra) -> User:
    return User.objects.create_user(
        username=username,
        password="testpass",
        email=f"{username}@example.com",
        **extra,
    )


@pytest.fixture
def owner_user():
    return _create_user("owner", first_name="Olive", last_name="Owner")


@pytest.fixture
def renter_user():
    return _create_user("renter", first_name="Riley", last_name="Renter")


@pytest.fixture
def other_user():
    return _create_user("other")


@pytest.fixture
def equipment(owner_user):
    return Equipment.objects.create(
        owner=owner_user,
        title="Pro Camera Kit",
        description="Mirrorless camera with two lenses.",
        daily_rate=Decimal("45.00"),
        damage_deposit_amount=Decimal("100.00"),
        is_available=True,
    )


@pytest.fixture
def booking_factory(equipment, renter_user) -> Callable[..., BookingRequest]:
    def _create_booking(
        *,
        start_date,
        end_date,
        status=BookingRequest.Status.PENDING,
        equipment_override: Equipment | None = None,
        renter=None,
        **extra_fields,
    ) -> BookingRequest:
        extra_fields.setdefault("total_amount", Decimal("257.50"))
        return BookingRequest.objects.create(
            equipment=equipment_override or equipment,
            renter=renter or renter_user,
            start_date=start_date,
            end_date=end_date,
            status=status,
            **extra_fields,
        )

    return _create_booking


@pytest.fixture
def payment_factory() -> Callable[..., Payment]:
    counter = {"n": 0}

    def _create_payment(booking: BookingRequest, **overrides) -> Payment:
        counter["n"] += 1
        fields = {
            "booking": booking,
            "renter_id": booking.renter_id,
            "owner_id": booking.equipment.owner_id,
            "stripe_payment_intent_id": f"pi_fixture_{counter['n']}",
            "stripe_charge_id": f"ch_fixture_{counter['n']}",
            "subtotal": Decimal("157.50"),
            "rental_amount": Decimal("150.00"),
            "service_fee": Decimal("7.50"),
            "insurance_amount": Decimal("0.00"),
            "deposit_amount": Decimal("100.00"),
            "total_amount": Decimal("257.50"),
            "escrow_amount": Decimal("257.50"),
            "owner_payout_amount": Decimal("150.00"),
            "payment_status": Payment.PaymentStatus.SUCCEEDED,
            "escrow_status": Payment.EscrowStatus.HELD,
            "deposit_status": Payment.DepositStatus.HELD,
        }
        fields.update(overrides)
        return Payment.objects.create(**fields)

    return _create_payment


@pytest.fixture
def fake_stripe(monkeypatch):
    """Replace the PaymentIntent and Refund APIs with in-memory recorders."""
    calls = SimpleNamespace(intents=[], refunds=[], refund_error=None)

    def create_intent(**kwargs):
        calls.intents.append(kwargs)
        intent_id = f"pi_test_{len(calls.intents)}"
        return SimpleNamespace(id=intent_id, client_secret=f"{intent_id}_secret_abc")

    def create_refund(**kwargs):
        if calls.refund_error is not None:
            raise calls.refund_error
        calls.refunds.append(kwargs)
        return SimpleNamespace(id=f"re_test_{len(calls.refunds)}")

    monkeypatch.setattr(
        stripe_api.stripe,
        "PaymentIntent",
        type("MockPI", (), {"create": staticmethod(create_intent)}),
    )
    monkeypatch.setattr(
        stripe_api.stripe,
        "Refund",
        type("MockRefund", (), {"create": staticmethod(create_refund)}),
    )
    return calls
