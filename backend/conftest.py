"""Shared pytest configuration and fixtures."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from types import SimpleNamespace
from typing import Callable
from zoneinfo import ZoneInfo

import pytest
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient

from bookings.confirmation import generate_confirmation_number
from bookings.domain import BookingRequest, DriverDetails, EmergencyContact
from bookings.lifecycle import build_lifecycle, stay_metadata
from bookings.models import Booking
from payments.gateway import (
    BOOKING_PAYMENT_KIND,
    PaymentIntentResult,
    PaymentVerificationError,
    RefundResult,
    VerifiedPayment,
    check_intent,
    to_cents,
)
from vehicles.models import (
    Addon,
    CancellationTier,
    InsurancePackage,
    MileagePackage,
    RateCard,
    Vehicle,
)

User = get_user_model()
BERLIN = ZoneInfo("Europe/Berlin")
# 1 March 2026, 09:00 local time.
FIXED_NOW = datetime(2026, 3, 1, 9, 0, tzinfo=BERLIN)


class FakePayments:
    """Keeps PaymentIntents and refunds in memory instead of calling Stripe."""

    def __init__(self) -> None:
        self.intents: dict[str, SimpleNamespace] = {}
        self.refunds: list[dict] = []
        self.fail_with: Exception | None = None

    def add_intent(
        self,
        payment_id: str,
        *,
        user_id: int,
        vehicle_id: str,
        start: date,
        end: date,
        amount: Decimal,
        status: str = "succeeded",
    ) -> SimpleNamespace:
        intent = SimpleNamespace(
            id=payment_id,
            status=status,
            currency="eur",
            amount_received=to_cents(amount) if status == "succeeded" else 0,
            metadata={
                "kind": BOOKING_PAYMENT_KIND,
                "user_id": str(user_id),
                **stay_metadata(vehicle_id, start, end),
            },
        )
        self.intents[payment_id] = intent
        return intent

    def create_intent(self, *, amount, user_id, metadata) -> PaymentIntentResult:
        payment_id = f"pi_{len(self.intents) + 1}"
        self.add_intent(
            payment_id,
            user_id=user_id,
            vehicle_id=metadata["vehicle_id"],
            start=date.fromisoformat(metadata["start_date"]),
            end=date.fromisoformat(metadata["end_date"]),
            amount=amount,
            status="requires_payment_method",
        )
        return PaymentIntentResult(
            payment_id=payment_id,
            client_secret=f"{payment_id}_secret",
            amount=amount,
            currency="eur",
        )

    def capture(self, payment_id: str, amount: Decimal) -> None:
        """Simulate the renter completing checkout for ``payment_id``."""
        intent = self.intents[payment_id]
        intent.status = "succeeded"
        intent.amount_received = to_cents(amount)

    def verify(self, payment_id, *, user_id, amount=None, metadata=None) -> VerifiedPayment:
        intent = self.intents.get(payment_id)
        if intent is None:
            raise PaymentVerificationError(f"Payment {payment_id} does not exist.")
        return check_intent(intent, user_id=user_id, amount=amount, metadata=metadata)

    def refund(self, payment_id, *, amount=None, idempotency_key=None) -> RefundResult:

        if self.fail_with is not None:
            raise self.fail_with
        self.refunds.append(
            {"payment_id": payment_id, "amount": amount, "idempotency_key": idempotency_key}
        )
        return RefundResult(refund_id=f"re_{len(self.refunds)}", status="succeeded", amount=amount)


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    def status_changed(self, booking: Booking) -> None:
        self.sent.append((booking.confirmation_number, booking.status))


@pytest.fixture
def api_client():
    """DRF API client for request/response helpers."""
    return APIClient()


@pytest.fixture
def renter_user():
    return User.objects.create_user(
        username="renter", password="testpass", email="renter@example.com"
    )


@pytest.fixture
def other_user():
    return User.objects.create_user(
        username="other", password="testpass", email="other@example.com"
    )


@pytest.fixture
def staff_user():
    return User.objects.create_user(
        username="ops", password="testpass", email="ops@example.com", is_staff=True
    )


@pytest.fixture
def vehicle():
    camper = Vehicle.objects.create(
        id="vw-california",
        name="VW California Ocean",
        location="Berlin Mitte",
        capacity=4,
    )
    rate_card = RateCard.objects.create(
        vehicle=camper,
        price_per_day=Decimal("100.00"),
        low_season_multiplier=Decimal("0.800"),
        high_season_multiplier=Decimal("1.300"),
        weekly_discount=Decimal("0.100"),
        monthly_discount=Decimal("0.200"),
        cleaning_fee=Decimal("80.00"),
        security_deposit_amount=Decimal("500.00"),
        mileage_included=200,
        additional_mileage_cost=Decimal("0.250"),
    )
    for days, fee in ((30, "0"), (14, "25"), (7, "50"), (1, "100")):
        CancellationTier.objects.create(
            rate_card=rate_card, days_before_pickup=days, fee_percentage=Decimal(fee)
        )
    return camper


@pytest.fixture
def other_vehicle():
    camper = Vehicle.objects.create(
        id="fiat-ducato",
        name="Fiat Ducato Family",
        location="Hamburg",
        capacity=6,
    )
    RateCard.objects.create(vehicle=camper, price_per_day=Decimal("120.00"))
    return camper


@pytest.fixture
def catalog():
    return {
        "bike_rack": Addon.objects.create(
            id="bike-rack", name="Bike rack", price_per_day=Decimal("10.00")
        ),
        "camping_chairs": Addon.objects.create(
            id="camping-chairs", name="Camping chairs", price_per_day=Decimal("5.00")
        ),
        "premium": InsurancePackage.objects.create(
            id="premium", name="Premium cover", price_per_day=Decimal("25.00")
        ),
        "standard": MileagePackage.objects.create(
            id="standard", name="Standard", included_km=200, additional_km_cost=Decimal("0.250")
        ),
        "extended": MileagePackage.objects.create(
            id="extended",
            name="Extended",
            included_km=400,
            additional_km_cost=Decimal("0.200"),
            extra_cost=Decimal("25.00"),
        ),
    }


def driver_details(**overrides) -> DriverDetails:
    values = {
        "first_name": "Mia",
        "last_name": "Schneider",
        "email": "mia@example.com",
        "phone": "+49 30 1234567",
        "license_number": "B072RRE2I55",
        "license_issue_date": date(2012, 6, 1),
        "license_expiry_date": date(2031, 6, 1),
        "date_of_birth": date(1990, 5, 17),
    }
    values.update(overrides)
    return DriverDetails(**values)


@pytest.fixture
def booking_request_factory(renter_user, vehicle) -> Callable[..., BookingRequest]:
    def _build(**overrides) -> BookingRequest:
        values = {
            "user_id": renter_user.id,
            "vehicle_id": vehicle.id,
            "start_date": date(2026, 3, 10),
            "end_date": date(2026, 3, 13),
            "guest_count": 2,
            "pickup_location": "Berlin Mitte",
            "return_location": "Berlin Mitte",
            "primary_driver": driver_details(),
            "emergency_contact": EmergencyContact(name="Jonas Schneider", phone="+49 30 7654321"),
        }
        values.update(overrides)
        return BookingRequest(**values)

    return _build


@pytest.fixture
def booking_factory(vehicle, renter_user) -> Callable[..., Booking]:
    def _create(**overrides) -> Booking:
        values = {
            "vehicle": vehicle,
            "user": renter_user,
            "confirmation_number": generate_confirmation_number(),
            "start_date": date(2026, 3, 10),
            "end_date": date(2026, 3, 13),
            "guest_count": 2,
            "pickup_location": "Berlin Mitte",
            "return_location": "Berlin Mitte",
            "total_amount": Decimal("404.00"),
            "status": Booking.Status.CONFIRMED,
            "primary_driver": driver_details().as_record(),
            "emergency_contact": {"name": "Jonas Schneider", "phone": "+49 30 7654321"},
        }
        values.update(overrides)
        return Booking.objects.create(**values)

    return _create


@pytest.fixture
def fake_payments():
    return FakePayments()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def lifecycle(fake_payments, notifier, clock):
    return build_lifecycle(payments=fake_payments, notifier=notifier, clock=clock)


@pytest.fixture
def driver_factory() -> Callable[..., DriverDetails]:
    return driver_details


@pytest.fixture
def paid_intent(fake_payments, renter_user, vehicle) -> Callable[..., SimpleNamespace]:
    """Register a succeeded PaymentIntent; defaults match booking_request_factory."""

    def _add(payment_id: str, **overrides) -> SimpleNamespace:
        values = {
            "user_id": renter_user.id,
            "vehicle_id": vehicle.id,
            "start": date(2026, 3, 10),
            "end": date(2026, 3, 13),
            "amount": Decimal("404.00"),
        }
        values.update(overrides)
        return fake_payments.add_intent(payment_id, **values)

    return _add
