"""
Booking lifecycle: create, confirm, complete and cancel reservations.

The lifecycle composes the validator, the pricing engine, the cancellation
policy and the reservation store. Hosts build one with build_lifecycle();
tests pass their own collaborators.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Callable, Iterable, Mapping, Optional, Protocol
from uuid import UUID

from django.conf import settings
from django.db.models import QuerySet
from django.utils import timezone

from notifications import tasks as notification_tasks
from payments.gateway import (
    PaymentGatewayError,
    PaymentIntentResult,
    PaymentVerificationError,
    RefundResult,
    StripePaymentGateway,
    VerifiedPayment,
    to_cents,
)
from vehicles.models import Addon, InsurancePackage, MileagePackage, RateCard, Vehicle
from vehicles.models import CancellationTier as VehicleCancellationTier

from . import cancellation_policy, pricing
from .availability import AvailabilityIndex
from .domain import (
    Actor,
    BookingRequest,
    CreateOutcome,
    assert_can_transition,
    initial_status,
    is_owner_or_admin,
)
from .errors import (
    AuthorizationError,
    BookingCreationFailedAfterPaymentError,
    BookingError,
    CancellationNotAllowedError,
    IdempotencyKeyReusedError,
    InvalidStateTransitionError,
    NotFoundError,
    PaymentAlreadyUsedError,
    PaymentNotVerifiedError,
    PaymentProviderError,
    RefundFailedError,
    ValidationError,
)
from .models import Booking
from .store import ReservationStore
from .validators import MIN_DRIVER_AGE, BookingValidator, FieldError

logger = logging.getLogger(__name__)


class PaymentCollaborator(Protocol):
    def create_intent(
        self, *, amount: Decimal, user_id: int, metadata: Mapping[str, str]
    ) -> PaymentIntentResult: ...

    def verify(
        self,
        payment_id: str,
        *,
        user_id: int,
        amount: Optional[Decimal] = None,
        metadata: Optional[Mapping[str, str]] = None,
    ) -> VerifiedPayment: ...

    def refund(
        self,
        payment_id: str,
        *,
        amount: Optional[Decimal] = None,
        idempotency_key: Optional[str] = None,
    ) -> RefundResult: ...


class BookingNotifier:
    """Queues renter emails; a broken broker never fails a booking."""

    def status_changed(self, booking: Booking) -> None:
        try:
            notification_tasks.send_booking_status_email.delay(
                booking.user_id, str(booking.id), booking.status
            )
        except Exception:
            logger.info(
                "notifications: failed to queue booking_status_email for booking %s",
                booking.id,
                exc_info=True,
            )


@dataclass(frozen=True)
class Selections:
    addons: tuple[pricing.PricedOption, ...] = ()
    insurance: Optional[pricing.PricedOption] = None
    mileage_package: Optional[pricing.MileageOption] = None


@dataclass(frozen=True)
class CancellationOutcome:
    booking: Booking
    settlement: cancellation_policy.CancellationSettlement
    days_until_pickup: int
    refund: Optional[RefundResult] = None


@dataclass(frozen=True)
class PaymentStart:
    breakdown: pricing.PriceBreakdown
    intent: PaymentIntentResult


def stay_metadata(vehicle_id: str, start: Optional[date], end: Optional[date]) -> dict[str, str]:
    """PaymentIntent metadata tying a payment to one vehicle and date range."""
    return {
        "vehicle_id": vehicle_id or "",
        "start_date": start.isoformat() if start else "",
        "end_date": end.isoformat() if end else "",
    }


def _unique(values: Iterable[str]) -> list[str]:
    seen: dict[str, None] = {}
    for value in values:
        if value:
            seen.setdefault(value, None)
    return list(seen)


class BookingLifecycle:
    def __init__(
        self,
        *,
        store: ReservationStore,
        payments: PaymentCollaborator,
        notifier: BookingNotifier,
        clock: Callable[[], datetime] = timezone.now,
        tax_rate: Optional[Decimal] = None,
        min_driver_age: Optional[int] = None,
    ) -> None:
        self.store = store
        self.availability: AvailabilityIndex = store.availability
        self.payments = payments
        self.notifier = notifier
        self.clock = clock
        if tax_rate is None:
            tax_rate = Decimal(str(getattr(settings, "BOOKING_TAX_RATE", pricing.TAX_RATE)))
        self.tax_rate = tax_rate
        if min_driver_age is None:
            min_driver_age = getattr(settings, "BOOKING_MIN_DRIVER_AGE", MIN_DRIVER_AGE)
        self.min_driver_age = min_driver_age

    def today(self) -> date:
        return timezone.localdate(self.clock())

    # Catalog

    def _load_vehicle(self, vehicle_id: str) -> Optional[Vehicle]:
        if not vehicle_id:
            return None
        return (
            Vehicle.objects.select_related("rate_card")
            .prefetch_related("rate_card__cancellation_tiers")
            .filter(pk=vehicle_id)
            .first()
        )

    def _rate_card(self, vehicle: Vehicle) -> pricing.RateCard:
        try:
            return vehicle.rate_card.as_rate_card()
        except RateCard.DoesNotExist:
            raise ValidationError(
                [FieldError("vehicle_id", "This vehicle has no rate card yet.")]
            ) from None

    def resolve_selections(
        self,
        addon_ids: Iterable[str] = (),
        insurance_package_id: str = "",
        mileage_package_id: str = "",
    ) -> Selections:
        """Load the chosen extras; unknown or inactive ids are field errors."""
        errors: list[FieldError] = []

        wanted = _unique(addon_ids)
        found = {addon.id: addon for addon in Addon.objects.filter(pk__in=wanted, is_active=True)}
        for addon_id in wanted:
            if addon_id not in found:
                errors.append(FieldError("addon_ids", f"Unknown add-on '{addon_id}'."))

        insurance = None
        if insurance_package_id:
            package = InsurancePackage.objects.filter(
                pk=insurance_package_id, is_active=True
            ).first()
            if package is None:
                errors.append(
                    FieldError(
                        "insurance_package_id",
                        f"Unknown insurance package '{insurance_package_id}'.",
                    )
                )
            else:
                insurance = package.as_option()

        mileage = None
        if mileage_package_id:
            package = MileagePackage.objects.filter(pk=mileage_package_id, is_active=True).first()
            if package is None:
                errors.append(
                    FieldError(
                        "mileage_package_id",
                        f"Unknown mileage package '{mileage_package_id}'.",
                    )
                )
            else:
                mileage = package.as_option()

        if errors:
            raise ValidationError(errors)
        return Selections(
            addons=tuple(found[addon_id].as_option() for addon_id in wanted),
            insurance=insurance,
            mileage_package=mileage,
        )

    def quote_for(
        self,
        vehicle_id: str,
        start: date,
        end: date,
        addon_ids: Iterable[str] = (),
        insurance_package_id: str = "",
        mileage_package_id: str = "",
    ) -> pricing.PriceBreakdown:
        """Price a stay without reserving anything."""
        vehicle = self._load_vehicle(vehicle_id)
        if vehicle is None or not vehicle.is_active:
            raise NotFoundError("Vehicle not found.", vehicle_id=vehicle_id)
        if end <= start:
            raise ValidationError([FieldError("end_date", "End date must be after start date.")])
        selections = self.resolve_selections(addon_ids, insurance_package_id, mileage_package_id)
        return pricing.quote(
            self._rate_card(vehicle),
            start,
            end,
            selections.addons,
            selections.insurance,
            selections.mileage_package,
            tax_rate=self.tax_rate,
        )

    # Payments

    def start_payment(
        self,
        user_id: int,
        vehicle_id: str,
        start: date,
        end: date,
        addon_ids: Iterable[str] = (),
        insurance_package_id: str = "",
        mileage_package_id: str = "",
    ) -> PaymentStart:
        """Quote a stay and open a PaymentIntent for its total."""
        breakdown = self.quote_for(
            vehicle_id, start, end, addon_ids, insurance_package_id, mileage_package_id
        )
        try:
            intent = self.payments.create_intent(
                amount=breakdown.total_price,
                user_id=user_id,
                metadata=stay_metadata(vehicle_id, start, end),
            )
        except PaymentGatewayError as exc:
            logger.exception("could not open a payment for vehicle %s", vehicle_id)
            raise PaymentProviderError(vehicle_id=vehicle_id) from exc
        return PaymentStart(breakdown=breakdown, intent=intent)

    def _verify(
        self,
        payment_id: str,
        *,
        user_id: int,
        metadata: Mapping[str, str],
        amount: Optional[Decimal] = None,
    ) -> VerifiedPayment:
        try:
            return self.payments.verify(
                payment_id, user_id=user_id, amount=amount, metadata=metadata
            )
        except PaymentVerificationError as exc:
            logger.warning("payment %s rejected for user %s: %s", payment_id, user_id, exc)
            raise PaymentNotVerifiedError(payment_id=payment_id) from exc
        except PaymentGatewayError as exc:
            logger.exception("could not verify payment %s", payment_id)
            raise PaymentProviderError(payment_id=payment_id) from exc

    # Commands

    def create(self, request: BookingRequest) -> CreateOutcome:
        """
        Validate, price and reserve.

        A paid request must reference a PaymentIntent this renter paid for
        this vehicle and these dates. When such a request fails afterwards,
        the payment is refunded and BookingCreationFailedAfterPaymentError is
        raised instead, unless a stored booking already holds the payment.
        """
        payment = None
        if request.is_paid:
            if not request.payment_id:
                raise ValidationError(
                    [
                        FieldError(
                            "payment_id", "A payment reference is required for paid bookings."
                        )
                    ]
                )
            payment = self._verify(
                request.payment_id,
                user_id=request.user_id,
                metadata=stay_metadata(request.vehicle_id, request.start_date, request.end_date),
            )

        try:
            outcome = self._create(request, payment)
        except (IdempotencyKeyReusedError, PaymentAlreadyUsedError):
            raise
        except BookingError as exc:
            if payment is not None:
                failure = self._compensate(request, exc)
                if failure is not None:
                    raise failure from exc
            raise

        if not outcome.replayed:
            self.notifier.status_changed(outcome.booking)
        return outcome

    def _create(
        self, request: BookingRequest, payment: Optional[VerifiedPayment]
    ) -> CreateOutcome:
        vehicle = self._load_vehicle(request.vehicle_id)
        validator = BookingValidator(self.today(), min_driver_age=self.min_driver_age)
        result = validator.validate(request, vehicle)
        if not result.valid:
            logger.warning(
                "booking request rejected for vehicle %s: %s",
                request.vehicle_id,
                ", ".join(error.field for error in result.errors),
            )
            raise ValidationError(result.errors)

        selections = self.resolve_selections(
            request.addon_ids, request.insurance_package_id, request.mileage_package_id
        )
        breakdown = pricing.quote(
            self._rate_card(vehicle),
            request.start_date,
            request.end_date,
            selections.addons,
            selections.insurance,
            selections.mileage_package,
            tax_rate=self.tax_rate,
        )
        if payment is not None and to_cents(payment.amount) != to_cents(breakdown.total_price):
            raise PaymentNotVerifiedError(
                f"The payment of {payment.amount} does not match the booking total "
                f"of {breakdown.total_price}.",
                payment_id=request.payment_id,
            )

        booking = Booking(
            vehicle=vehicle,
            user_id=request.user_id,
            start_date=request.start_date,
            end_date=request.end_date,
            guest_count=request.guest_count,
            pickup_location=request.pickup_location.strip(),
            return_location=request.return_location.strip(),
            addon_ids=[addon.id for addon in selections.addons],
            insurance_package_id=request.insurance_package_id or "",
            mileage_package_id=request.mileage_package_id or "",
            primary_driver=request.primary_driver.as_record(),
            emergency_contact=request.emergency_contact.as_record(),
            total_amount=breakdown.total_price,
            totals=breakdown.as_totals(),
            payment_status=(
                Booking.PaymentStatus.PAID if payment is not None else Booking.PaymentStatus.PENDING
            ),
            payment_id=request.payment_id if payment is not None else "",
            status=initial_status(request),
        )
        return self.store.create(booking, idempotency_key=request.idempotency_key)

    def _compensate(
        self, request: BookingRequest, cause: BookingError
    ) -> Optional[BookingCreationFailedAfterPaymentError]:
        payment_id = request.payment_id
        try:
            refund = self.store.refund_unclaimed_payment(
                request.vehicle_id,
                payment_id,
                lambda: self.payments.refund(
                    payment_id, idempotency_key=f"payment:{payment_id}:booking-failed:refund"
                ),
            )
        except PaymentGatewayError:
            logger.exception(
                "refund failed for payment %s after booking for vehicle %s failed (%s)",
                payment_id,
                request.vehicle_id,
                cause.kind,
            )
            return BookingCreationFailedAfterPaymentError(
                cause,
                payment_id=payment_id,
                refund_id=None,
                refund_succeeded=False,
            )
        if refund is None:
            return None

        logger.warning(
            "payment %s refunded (%s) after booking for vehicle %s failed (%s)",
            payment_id,
            refund.refund_id,
            request.vehicle_id,
            cause.kind,
        )
        return BookingCreationFailedAfterPaymentError(
            cause,
            payment_id=payment_id,
            refund_id=refund.refund_id,
            refund_succeeded=True,
        )

    def cancel(
        self, booking_id: UUID, reason: str = "", actor: Optional[Actor] = None
    ) -> CancellationOutcome:
        """
        Cancel a pending or confirmed booking and settle the fee.

        Paid bookings are refunded before the cancellation is saved; a
        rejected refund leaves the booking untouched.
        """
        actor = actor or Actor.system()
        now = self.clock()
        details: dict[str, object] = {}

        def mutate(booking: Booking) -> None:
            if not is_owner_or_admin(booking, actor):
                raise AuthorizationError(booking_id=str(booking.id))
            if booking.is_terminal():
                raise CancellationNotAllowedError(
                    booking_id=str(booking.id), status=booking.status
                )
            assert_can_transition(booking, Booking.Status.CANCELLED)

            tiers = cancellation_policy.sort_tiers(
                pricing.CancellationTier(
                    days_before_pickup=tier.days_before_pickup,
                    fee_percentage=tier.fee_percentage,
                )
                for tier in VehicleCancellationTier.objects.filter(rate_card_id=booking.vehicle_id)
            )
            days = cancellation_policy.days_until_pickup(
                booking.start_date, timezone.localtime(now)
            )
            fee_percentage = cancellation_policy.evaluate(tiers, days)
            settlement = cancellation_policy.settle(booking.total_amount, fee_percentage)

            if (
                booking.payment_status == Booking.PaymentStatus.PAID
                and booking.payment_id
                and settlement.refund_amount > Decimal("0")
            ):
                cents = to_cents(settlement.refund_amount)
                try:
                    details["refund"] = self.payments.refund(
                        booking.payment_id,
                        amount=settlement.refund_amount,
                        idempotency_key=f"booking:{booking.id}:cancel:refund:{cents}",
                    )
                except PaymentGatewayError as exc:
                    logger.exception(
                        "refund of %s for booking %s failed", settlement.refund_amount, booking.id
                    )
                    raise RefundFailedError(booking_id=str(booking.id)) from exc
                booking.payment_status = Booking.PaymentStatus.REFUNDED

            booking.status = Booking.Status.CANCELLED
            booking.cancellation_reason = reason or ""
            booking.cancellation_date = now
            booking.cancellation_fee = settlement.cancellation_fee
            booking.refund_amount = settlement.refund_amount
            if actor.id is None:
                booking.cancelled_by = Booking.CancelledBy.SYSTEM
            elif actor.id == booking.user_id:
                booking.cancelled_by = Booking.CancelledBy.USER
            else:
                booking.cancelled_by = Booking.CancelledBy.ADMIN
            details["settlement"] = settlement
            details["days"] = days

        booking = self.store.update(booking_id, mutate)
        logger.info(
            "booking %s cancelled %s days before pickup: fee %s, refund %s",
            booking.confirmation_number,
            details["days"],
            booking.cancellation_fee,
            booking.refund_amount,
        )
        self.notifier.status_changed(booking)
        return CancellationOutcome(
            booking=booking,
            settlement=details["settlement"],
            days_until_pickup=details["days"],
            refund=details.get("refund"),
        )

    def update_status(self, booking_id: UUID, new_status: str) -> Booking:
        """Move a booking along the state graph; cancellations go through cancel()."""
        if new_status not in Booking.Status.values:
            raise ValidationError([FieldError("status", f"Unknown status '{new_status}'.")])

        def mutate(booking: Booking) -> None:
            if new_status == Booking.Status.CANCELLED:
                raise InvalidStateTransitionError(
                    booking.status,
                    new_status,
                    "Use the cancellation flow to cancel a booking.",
                )
            assert_can_transition(booking, new_status)
            booking.status = new_status

        booking = self.store.update(booking_id, mutate)
        logger.info("booking %s moved to %s", booking.confirmation_number, new_status)
        self.notifier.status_changed(booking)
        return booking

    def mark_paid(
        self, booking_id: UUID, payment_id: str, actor: Optional[Actor] = None
    ) -> Booking:
        """
        Record a captured payment on a pending booking and confirm it.

        The PaymentIntent must belong to the booking's renter, name its
        vehicle and dates, and have received exactly the booking total.
        """
        actor = actor or Actor.system()
        payment_id = (payment_id or "").strip()
        if not payment_id:
            raise ValidationError([FieldError("payment_id", "Payment reference is required.")])
        changed: list[bool] = []

        def mutate(booking: Booking) -> None:
            if not is_owner_or_admin(booking, actor):
                raise AuthorizationError(booking_id=str(booking.id))
            if (
                booking.payment_status == Booking.PaymentStatus.PAID
                and booking.payment_id == payment_id
            ):
                return
            assert_can_transition(booking, Booking.Status.CONFIRMED)
            if self.store.payment_in_use(payment_id, exclude_booking_id=booking.id):
                raise PaymentAlreadyUsedError(payment_id=payment_id)
            self._verify(
                payment_id,
                user_id=booking.user_id,
                amount=booking.total_amount,
                metadata=stay_metadata(booking.vehicle_id, booking.start_date, booking.end_date),
            )
            booking.payment_status = Booking.PaymentStatus.PAID
            booking.payment_id = payment_id
            booking.status = Booking.Status.CONFIRMED
            changed.append(True)

        booking = self.store.update(booking_id, mutate)
        if changed:
            logger.info("booking %s paid (%s)", booking.confirmation_number, payment_id)
            self.notifier.status_changed(booking)
        return booking

    # Queries

    def get(self, booking_id: UUID) -> Booking:
        return self.store.get(booking_id)

    def get_for_actor(self, booking_id: UUID, actor: Actor) -> Booking:
        booking = self.store.get(booking_id)
        if not is_owner_or_admin(booking, actor):
            raise AuthorizationError("You are not allowed to view this booking.")
        return booking

    def get_by_confirmation_number(self, number: str) -> Booking:
        return self.store.get_by_confirmation_number(number)

    def all(self) -> QuerySet[Booking]:
        return self.store.all()

    def for_user(self, user_id: int) -> QuerySet[Booking]:
        return self.store.for_user(user_id)

    def by_status(self, status: str) -> QuerySet[Booking]:
        return self.store.by_status(status)

    def by_vehicle(self, vehicle_id: str) -> QuerySet[Booking]:
        return self.store.by_vehicle(vehicle_id)


def build_lifecycle(**overrides) -> BookingLifecycle:
    """Wire the lifecycle with the production collaborators."""
    params: dict[str, object] = {
        "store": ReservationStore(AvailabilityIndex()),
        "payments": StripePaymentGateway(),
        "notifier": BookingNotifier(),
        "clock": timezone.now,
    }
    params.update(overrides)
    return BookingLifecycle(**params)
