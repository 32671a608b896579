import uuid
from datetime import date
from decimal import Decimal

import pytest

from bookings.confirmation import is_confirmation_number
from bookings.domain import Actor
from bookings.errors import (
    AuthorizationError,
    AvailabilityConflictError,
    BookingCreationFailedAfterPaymentError,
    CancellationNotAllowedError,
    InvalidStateTransitionError,
    NotFoundError,
    PaymentAlreadyUsedError,
    PaymentNotVerifiedError,
    PaymentProviderError,
    RefundFailedError,
    ValidationError,
)
from bookings.models import Booking
from payments.gateway import PaymentError, PaymentTransientError
from vehicles.models import Vehicle

pytestmark = pytest.mark.django_db


def error_fields(exc):
    return {error["field"] for error in exc.as_dict()["errors"]}


# Creation


def test_create_prices_and_reserves_a_pending_booking(lifecycle, booking_request_factory, notifier):
    outcome = lifecycle.create(booking_request_factory())

    booking = outcome.booking
    assert outcome.replayed is False
    assert booking.status == Booking.Status.PENDING
    assert booking.total_amount == Decimal("404.00")
    assert booking.totals["tax_amount"] == "24.00"
    assert booking.totals["security_deposit"] == "500.00"
    assert is_confirmation_number(booking.confirmation_number)
    assert booking.primary_driver["date_of_birth"] == "1990-05-17"
    assert notifier.sent == [(booking.confirmation_number, Booking.Status.PENDING)]


def test_overlapping_request_is_rejected_with_suggestions(lifecycle, booking_request_factory):
    lifecycle.create(booking_request_factory())

    with pytest.raises(AvailabilityConflictError) as excinfo:
        lifecycle.create(
            booking_request_factory(start_date=date(2026, 3, 12), end_date=date(2026, 3, 15))
        )

    payload = excinfo.value.as_dict()
    assert payload["conflicts"] == [{"start_date": "2026-03-10", "end_date": "2026-03-13"}]
    assert payload["suggested_dates"][0]["available_from"] == "2026-03-13"
    assert Booking.objects.count() == 1


def test_same_day_turnover_is_bookable(lifecycle, booking_request_factory):
    lifecycle.create(booking_request_factory())

    outcome = lifecycle.create(
        booking_request_factory(start_date=date(2026, 3, 13), end_date=date(2026, 3, 16))
    )

    assert outcome.booking.start_date == date(2026, 3, 13)
    assert Booking.objects.count() == 2


def test_paid_request_starts_confirmed(lifecycle, booking_request_factory, paid_intent):
    paid_intent("pi_1")

    outcome = lifecycle.create(
        booking_request_factory(payment_status=Booking.PaymentStatus.PAID, payment_id="pi_1")
    )

    assert outcome.booking.status == Booking.Status.CONFIRMED
    assert outcome.booking.payment_id == "pi_1"


def test_extras_are_priced_into_the_booking(lifecycle, booking_request_factory, catalog):
    outcome = lifecycle.create(
        booking_request_factory(
            addon_ids=("bike-rack", "bike-rack"),
            insurance_package_id="premium",
            mileage_package_id="extended",
        )
    )

    booking = outcome.booking
    assert booking.addon_ids == ["bike-rack"]
    assert booking.total_amount == Decimal("598.40")
    assert booking.totals["insurance"]["total"] == "75.00"
    assert booking.totals["mileage"]["id"] == "extended"


def test_unknown_extras_are_field_errors(lifecycle, booking_request_factory, catalog):
    with pytest.raises(ValidationError) as excinfo:
        lifecycle.create(
            booking_request_factory(
                addon_ids=("jetski",), insurance_package_id="gold", mileage_package_id="moon"
            )
        )

    assert error_fields(excinfo.value) == {
        "addon_ids",
        "insurance_package_id",
        "mileage_package_id",
    }


def test_invalid_request_collects_every_error(
    lifecycle, booking_request_factory, driver_factory, notifier
):
    with pytest.raises(ValidationError) as excinfo:
        lifecycle.create(
            booking_request_factory(
                guest_count=9, primary_driver=driver_factory(date_of_birth=date(2010, 1, 1))
            )
        )

    assert error_fields(excinfo.value) == {"guest_count", "primary_driver.date_of_birth"}
    assert not Booking.objects.exists()
    assert notifier.sent == []


def test_vehicle_without_rate_card_cannot_be_booked(lifecycle, booking_request_factory):
    Vehicle.objects.create(id="bare-van", name="Bare Van", location="Leipzig")

    with pytest.raises(ValidationError) as excinfo:
        lifecycle.create(booking_request_factory(vehicle_id="bare-van"))

    assert error_fields(excinfo.value) == {"vehicle_id"}


def test_repeated_idempotency_key_returns_the_first_booking(
    lifecycle, booking_request_factory, notifier
):
    first = lifecycle.create(booking_request_factory(idempotency_key="checkout-42"))
    second = lifecycle.create(booking_request_factory(idempotency_key="checkout-42"))

    assert second.replayed is True
    assert second.booking.id == first.booking.id
    assert Booking.objects.count() == 1
    assert len(notifier.sent) == 1


def test_idempotency_key_reused_for_other_dates_is_rejected(lifecycle, booking_request_factory):
    lifecycle.create(booking_request_factory(idempotency_key="checkout-42"))

    with pytest.raises(ValidationError) as excinfo:
        lifecycle.create(
            booking_request_factory(
                idempotency_key="checkout-42",
                start_date=date(2026, 4, 10),
                end_date=date(2026, 4, 12),
            )
        )

    assert error_fields(excinfo.value) == {"idempotency_key"}


# Payment compensation


def test_failed_paid_booking_is_refunded(
    lifecycle, booking_factory, booking_request_factory, fake_payments, paid_intent
):
    booking_factory()
    paid_intent("pi_123", start=date(2026, 3, 12), end=date(2026, 3, 15))

    with pytest.raises(BookingCreationFailedAfterPaymentError) as excinfo:
        lifecycle.create(
            booking_request_factory(
                start_date=date(2026, 3, 12),
                end_date=date(2026, 3, 15),
                payment_status=Booking.PaymentStatus.PAID,
                payment_id="pi_123",
            )
        )

    exc = excinfo.value
    assert exc.status_code == 409
    assert exc.as_dict()["cause"]["kind"] == "availability_conflict"
    assert exc.as_dict()["payment_refunded"] is True
    assert exc.as_dict()["refund_id"] == "re_1"
    assert fake_payments.refunds == [
        {
            "payment_id": "pi_123",
            "amount": None,
            "idempotency_key": "payment:pi_123:booking-failed:refund",
        }
    ]


def test_paid_request_failing_validation_is_refunded(
    lifecycle, booking_request_factory, fake_payments, paid_intent
):
    paid_intent("pi_7")

    with pytest.raises(BookingCreationFailedAfterPaymentError) as excinfo:
        lifecycle.create(
            booking_request_factory(
                guest_count=12, payment_status=Booking.PaymentStatus.PAID, payment_id="pi_7"
            )
        )

    assert excinfo.value.status_code == 400
    assert isinstance(excinfo.value.cause, ValidationError)
    assert len(fake_payments.refunds) == 1


def test_failed_refund_is_reported_for_manual_follow_up(
    lifecycle, booking_factory, booking_request_factory, fake_payments, paid_intent
):
    booking_factory()
    paid_intent("pi_123")
    fake_payments.fail_with = PaymentError("card network down")

    with pytest.raises(BookingCreationFailedAfterPaymentError) as excinfo:
        lifecycle.create(
            booking_request_factory(
                payment_status=Booking.PaymentStatus.PAID, payment_id="pi_123"
            )
        )

    payload = excinfo.value.as_dict()
    assert payload["payment_refunded"] is False
    assert payload["refund_id"] is None
    assert "our team will refund it" in payload["message"]


def test_unpaid_failures_are_not_compensated(
    lifecycle, booking_factory, booking_request_factory, fake_payments
):
    booking_factory()

    with pytest.raises(AvailabilityConflictError):
        lifecycle.create(booking_request_factory())

    assert fake_payments.refunds == []


def test_unknown_payment_reference_is_neither_trusted_nor_refunded(
    lifecycle, booking_request_factory, fake_payments
):
    with pytest.raises(PaymentNotVerifiedError) as excinfo:
        lifecycle.create(
            booking_request_factory(
                payment_status=Booking.PaymentStatus.PAID, payment_id="pi_made_up"
            )
        )

    assert excinfo.value.status_code == 402
    assert Booking.objects.count() == 0
    assert fake_payments.refunds == []


def test_another_renters_payment_is_never_refunded(
    lifecycle, booking_request_factory, fake_payments, paid_intent, other_user
):
    paid_intent("pi_someone_elses", user_id=other_user.id)

    with pytest.raises(PaymentNotVerifiedError):
        lifecycle.create(
            booking_request_factory(
                guest_count=None,
                primary_driver=None,
                payment_status=Booking.PaymentStatus.PAID,
                payment_id="pi_someone_elses",
            )
        )

    assert fake_payments.refunds == []


@pytest.mark.parametrize(
    "overrides",
    [
        {"start": date(2026, 3, 20), "end": date(2026, 3, 23)},
        {"vehicle_id": "fiat-ducato"},
        {"status": "requires_payment_method"},
    ],
)
def test_payment_for_another_stay_is_rejected(
    lifecycle, booking_request_factory, fake_payments, paid_intent, overrides
):
    paid_intent("pi_1", **overrides)

    with pytest.raises(PaymentNotVerifiedError):
        lifecycle.create(
            booking_request_factory(payment_status=Booking.PaymentStatus.PAID, payment_id="pi_1")
        )

    assert Booking.objects.count() == 0
    assert fake_payments.refunds == []


def test_underpaid_booking_is_refunded(
    lifecycle, booking_request_factory, fake_payments, paid_intent
):
    paid_intent("pi_1", amount=Decimal("4.04"))

    with pytest.raises(BookingCreationFailedAfterPaymentError) as excinfo:
        lifecycle.create(
            booking_request_factory(payment_status=Booking.PaymentStatus.PAID, payment_id="pi_1")
        )

    assert excinfo.value.status_code == 402
    assert excinfo.value.as_dict()["cause"]["kind"] == "payment_not_verified"
    assert [refund["payment_id"] for refund in fake_payments.refunds] == ["pi_1"]
    assert Booking.objects.count() == 0


def test_idempotent_retry_for_other_dates_keeps_the_original_payment(
    lifecycle, booking_request_factory, fake_payments, paid_intent
):
    paid_intent("pi_1")
    paid_intent("pi_2", start=date(2026, 3, 20), end=date(2026, 3, 23))
    first = lifecycle.create(
        booking_request_factory(
            payment_status=Booking.PaymentStatus.PAID, payment_id="pi_1", idempotency_key="k1"
        )
    )

    def retry(payment_id):
        return lifecycle.create(
            booking_request_factory(
                start_date=date(2026, 3, 20),
                end_date=date(2026, 3, 23),
                payment_status=Booking.PaymentStatus.PAID,
                payment_id=payment_id,
                idempotency_key="k1",
            )
        )

    with pytest.raises(PaymentNotVerifiedError):
        retry("pi_1")
    with pytest.raises(ValidationError) as excinfo:
        retry("pi_2")

    assert error_fields(excinfo.value) == {"idempotency_key"}
    assert fake_payments.refunds == []

    first.booking.refresh_from_db()
    assert first.booking.status == Booking.Status.CONFIRMED
    assert first.booking.payment_status == Booking.PaymentStatus.PAID


def test_payment_already_holding_a_booking_is_not_reused(
    lifecycle, booking_request_factory, fake_payments, paid_intent
):
    paid_intent("pi_1")
    lifecycle.create(
        booking_request_factory(payment_status=Booking.PaymentStatus.PAID, payment_id="pi_1")
    )

    with pytest.raises(PaymentAlreadyUsedError):
        lifecycle.create(
            booking_request_factory(payment_status=Booking.PaymentStatus.PAID, payment_id="pi_1")
        )
    with pytest.raises(ValidationError):
        lifecycle.create(
            booking_request_factory(
                guest_count=12, payment_status=Booking.PaymentStatus.PAID, payment_id="pi_1"
            )
        )

    assert fake_payments.refunds == []
    assert Booking.objects.get().payment_status == Booking.PaymentStatus.PAID


def test_start_payment_opens_an_intent_for_the_quoted_total(
    lifecycle, booking_request_factory, fake_payments, vehicle, renter_user
):
    started = lifecycle.start_payment(
        renter_user.id, vehicle.id, date(2026, 3, 10), date(2026, 3, 13)
    )

    assert started.breakdown.total_price == Decimal("404.00")
    assert started.intent.amount == Decimal("404.00")
    intent = fake_payments.intents[started.intent.payment_id]
    assert intent.metadata["user_id"] == str(renter_user.id)
    assert intent.metadata["start_date"] == "2026-03-10"

    fake_payments.capture(started.intent.payment_id, started.intent.amount)
    outcome = lifecycle.create(
        booking_request_factory(
            payment_status=Booking.PaymentStatus.PAID, payment_id=started.intent.payment_id
        )
    )

    assert outcome.booking.status == Booking.Status.CONFIRMED
    assert outcome.booking.payment_id == started.intent.payment_id


def test_start_payment_reports_stripe_outages(lifecycle, fake_payments, vehicle, renter_user):
    def unavailable(**kwargs):
        raise PaymentTransientError("Stripe is temporarily unavailable; retry later.")

    fake_payments.create_intent = unavailable

    with pytest.raises(PaymentProviderError):
        lifecycle.start_payment(renter_user.id, vehicle.id, date(2026, 3, 10), date(2026, 3, 13))


# Cancellation


def test_renter_cancels_nine_days_before_pickup(
    lifecycle, booking_request_factory, renter_user, notifier, fake_payments, clock
):
    booking = lifecycle.create(booking_request_factory()).booking

    outcome = lifecycle.cancel(booking.id, "Change of plans", Actor.from_user(renter_user))

    assert outcome.days_until_pickup == 9
    assert outcome.settlement.fee_percentage == Decimal("25.00")
    assert outcome.booking.cancellation_fee == Decimal("101.00")
    assert outcome.booking.refund_amount == Decimal("303.00")
    assert outcome.booking.cancelled_by == Booking.CancelledBy.USER
    assert outcome.booking.cancellation_date == clock()
    assert outcome.refund is None
    assert fake_payments.refunds == []
    assert notifier.sent[-1] == (booking.confirmation_number, Booking.Status.CANCELLED)

    stored = Booking.objects.get(pk=booking.id)
    assert stored.status == Booking.Status.CANCELLED
    assert stored.cancellation_reason == "Change of plans"


def test_cancelling_a_paid_booking_refunds_the_difference(
    lifecycle, booking_factory, renter_user, fake_payments
):
    booking = booking_factory(
        start_date=date(2026, 3, 11),
        end_date=date(2026, 3, 14),
        total_amount=Decimal("500.00"),
        payment_status=Booking.PaymentStatus.PAID,
        payment_id="pi_paid",
    )

    outcome = lifecycle.cancel(booking.id, actor=Actor.from_user(renter_user))

    assert outcome.days_until_pickup == 10
    assert outcome.settlement.cancellation_fee == Decimal("125.00")
    assert outcome.settlement.refund_amount == Decimal("375.00")
    assert outcome.refund.refund_id == "re_1"
    assert fake_payments.refunds == [
        {
            "payment_id": "pi_paid",
            "amount": Decimal("375.00"),
            "idempotency_key": f"booking:{booking.id}:cancel:refund:37500",
        }
    ]
    booking.refresh_from_db()
    assert booking.payment_status == Booking.PaymentStatus.REFUNDED


def test_full_fee_cancellation_skips_the_refund(
    lifecycle, booking_factory, renter_user, fake_payments
):
    booking = booking_factory(
        start_date=date(2026, 3, 2),
        end_date=date(2026, 3, 5),
        payment_status=Booking.PaymentStatus.PAID,
        payment_id="pi_paid",
    )

    outcome = lifecycle.cancel(booking.id, actor=Actor.from_user(renter_user))

    assert outcome.booking.refund_amount == Decimal("0.00")
    assert outcome.booking.payment_status == Booking.PaymentStatus.PAID
    assert fake_payments.refunds == []


def test_rejected_refund_leaves_the_booking_untouched(
    lifecycle, booking_factory, renter_user, fake_payments, notifier
):
    booking = booking_factory(payment_status=Booking.PaymentStatus.PAID, payment_id="pi_paid")
    fake_payments.fail_with = PaymentTransientError("Temporary Stripe error, please retry.")

    with pytest.raises(RefundFailedError) as excinfo:
        lifecycle.cancel(booking.id, actor=Actor.from_user(renter_user))

    assert excinfo.value.status_code == 502
    booking.refresh_from_db()
    assert booking.status == Booking.Status.CONFIRMED
    assert booking.payment_status == Booking.PaymentStatus.PAID
    assert booking.cancellation_fee is None
    assert notifier.sent == []


def test_other_renters_cannot_cancel(lifecycle, booking_factory, other_user):
    booking = booking_factory()

    with pytest.raises(AuthorizationError):
        lifecycle.cancel(booking.id, actor=Actor.from_user(other_user))

    booking.refresh_from_db()
    assert booking.status == Booking.Status.CONFIRMED


def test_staff_and_system_cancellations_are_attributed(
    lifecycle, booking_factory, staff_user
):
    by_staff = booking_factory()
    by_system = booking_factory(start_date=date(2026, 4, 1), end_date=date(2026, 4, 3))

    staff_outcome = lifecycle.cancel(by_staff.id, actor=Actor.from_user(staff_user))
    system_outcome = lifecycle.cancel(by_system.id)

    assert staff_outcome.booking.cancelled_by == Booking.CancelledBy.ADMIN
    assert system_outcome.booking.cancelled_by == Booking.CancelledBy.SYSTEM


@pytest.mark.parametrize("status", [Booking.Status.CANCELLED, Booking.Status.COMPLETED])
def test_terminal_bookings_cannot_be_cancelled(lifecycle, booking_factory, renter_user, status):
    booking = booking_factory(status=status)

    with pytest.raises(CancellationNotAllowedError):
        lifecycle.cancel(booking.id, actor=Actor.from_user(renter_user))


@pytest.mark.parametrize("booking_id", [uuid.uuid4(), "not-a-uuid"])
def test_cancelling_an_unknown_booking(lifecycle, booking_id):
    with pytest.raises(NotFoundError):
        lifecycle.cancel(booking_id)


def test_cancelled_dates_can_be_booked_again(lifecycle, booking_request_factory, renter_user):
    booking = lifecycle.create(booking_request_factory()).booking
    lifecycle.cancel(booking.id, actor=Actor.from_user(renter_user))

    outcome = lifecycle.create(
        booking_request_factory(start_date=date(2026, 3, 12), end_date=date(2026, 3, 15))
    )

    assert outcome.booking.status == Booking.Status.PENDING


# Status changes


def test_booking_moves_through_confirmed_to_completed(lifecycle, booking_factory, notifier):
    booking = booking_factory(status=Booking.Status.PENDING)

    lifecycle.update_status(booking.id, Booking.Status.CONFIRMED)
    completed = lifecycle.update_status(booking.id, Booking.Status.COMPLETED)

    assert completed.status == Booking.Status.COMPLETED
    assert [status for _, status in notifier.sent] == ["confirmed", "completed"]


def test_completed_booking_cannot_be_reopened(lifecycle, booking_factory):
    booking = booking_factory(status=Booking.Status.COMPLETED)

    with pytest.raises(InvalidStateTransitionError) as excinfo:
        lifecycle.update_status(booking.id, Booking.Status.CONFIRMED)

    assert excinfo.value.as_dict()["current_status"] == "completed"


def test_status_update_refuses_to_cancel(lifecycle, booking_factory):
    booking = booking_factory()

    with pytest.raises(InvalidStateTransitionError) as excinfo:
        lifecycle.update_status(booking.id, Booking.Status.CANCELLED)

    assert "cancellation flow" in excinfo.value.message


def test_unknown_status_is_a_validation_error(lifecycle, booking_factory):
    booking = booking_factory()

    with pytest.raises(ValidationError) as excinfo:
        lifecycle.update_status(booking.id, "archived")

    assert error_fields(excinfo.value) == {"status"}


def test_mark_paid_confirms_once(lifecycle, booking_factory, notifier, paid_intent):
    booking = booking_factory(status=Booking.Status.PENDING)
    paid_intent("pi_late")

    paid = lifecycle.mark_paid(booking.id, "pi_late")
    again = lifecycle.mark_paid(booking.id, "pi_late")

    assert paid.status == Booking.Status.CONFIRMED
    assert again.payment_status == Booking.PaymentStatus.PAID
    assert len(notifier.sent) == 1


def test_mark_paid_rejects_cancelled_bookings(lifecycle, booking_factory):
    booking = booking_factory(status=Booking.Status.CANCELLED)

    with pytest.raises(InvalidStateTransitionError):
        lifecycle.mark_paid(booking.id, "pi_late")


def test_mark_paid_requires_a_reference(lifecycle, booking_factory):
    booking = booking_factory(status=Booking.Status.PENDING)

    with pytest.raises(ValidationError):
        lifecycle.mark_paid(booking.id, " ")


def test_mark_paid_rejects_an_unverified_payment(lifecycle, booking_factory, paid_intent):
    booking = booking_factory(status=Booking.Status.PENDING)
    paid_intent("pi_short", amount=Decimal("40.40"))

    for payment_id in ("pi_short", "pi_made_up"):
        with pytest.raises(PaymentNotVerifiedError):
            lifecycle.mark_paid(booking.id, payment_id)

    booking.refresh_from_db()
    assert booking.status == Booking.Status.PENDING
    assert booking.payment_status == Booking.PaymentStatus.PENDING


def test_mark_paid_refuses_a_payment_held_by_another_booking(
    lifecycle, booking_factory, paid_intent
):
    booking_factory(
        start_date=date(2026, 4, 1),
        end_date=date(2026, 4, 4),
        payment_status=Booking.PaymentStatus.PAID,
        payment_id="pi_late",
    )
    booking = booking_factory(status=Booking.Status.PENDING)
    paid_intent("pi_late")

    with pytest.raises(PaymentAlreadyUsedError):
        lifecycle.mark_paid(booking.id, "pi_late")


def test_only_the_renter_or_staff_can_pay_a_booking(lifecycle, booking_factory, other_user):
    booking = booking_factory(status=Booking.Status.PENDING)

    with pytest.raises(AuthorizationError):
        lifecycle.mark_paid(booking.id, "pi_late", Actor.from_user(other_user))


# Queries


def test_lookups(lifecycle, booking_factory, other_user, other_vehicle):
    mine = booking_factory(confirmation_number="CV123456ABCD")
    theirs = booking_factory(
        user=other_user,
        vehicle=other_vehicle,
        status=Booking.Status.PENDING,
        confirmation_number="CV654321WXYZ",
    )

    assert lifecycle.get_by_confirmation_number("cv123456abcd") == mine
    assert list(lifecycle.for_user(other_user.id)) == [theirs]
    assert list(lifecycle.by_vehicle(other_vehicle.id)) == [theirs]
    assert list(lifecycle.by_status(Booking.Status.CONFIRMED)) == [mine]
    assert lifecycle.all().count() == 2


def test_get_for_actor_checks_ownership(lifecycle, booking_factory, renter_user, other_user):
    booking = booking_factory()

    assert lifecycle.get_for_actor(booking.id, Actor.from_user(renter_user)) == booking
    with pytest.raises(AuthorizationError):
        lifecycle.get_for_actor(booking.id, Actor.from_user(other_user))
    with pytest.raises(NotFoundError):
        lifecycle.get(uuid.uuid4())


def test_quote_for_matches_booked_total(lifecycle, vehicle, catalog):
    breakdown = lifecycle.quote_for(
        vehicle.id, date(2026, 3, 10), date(2026, 3, 13), ["bike-rack"], "premium", "extended"
    )

    assert breakdown.total_price == Decimal("598.40")


def test_quote_for_inactive_vehicle(lifecycle, vehicle):
    vehicle.is_active = False
    vehicle.save()

    with pytest.raises(NotFoundError):
        lifecycle.quote_for(vehicle.id, date(2026, 3, 10), date(2026, 3, 13))
