"""Persistence for bookings with per-vehicle serialisation of writes."""

from __future__ import annotations

import logging
from typing import Callable, Optional, TypeVar
from uuid import UUID

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import DatabaseError, IntegrityError, transaction
from django.db.models import QuerySet

from vehicles.models import Vehicle

from .availability import AvailabilityIndex
from .confirmation import generate_confirmation_number
from .domain import CreateOutcome
from .errors import (
    AvailabilityConflictError,
    IdempotencyKeyReusedError,
    NotFoundError,
    PaymentAlreadyUsedError,
    PersistenceError,
    ValidationError,
)
from .models import Booking
from .validators import FieldError

logger = logging.getLogger(__name__)

DEFAULT_CONFIRMATION_ATTEMPTS = 5

T = TypeVar("T")


class ReservationStore:
    """
    Owns every write to Booking rows.

    Each write takes a row lock on the vehicle first, so the conflict check
    and the insert (or the status change) happen atomically per vehicle
    while different vehicles never wait on each other.
    """

    def __init__(
        self,
        availability: Optional[AvailabilityIndex] = None,
        *,
        confirmation_attempts: Optional[int] = None,
        number_factory: Callable[[], str] = generate_confirmation_number,
    ) -> None:
        self.availability = availability or AvailabilityIndex()
        if confirmation_attempts is None:
            confirmation_attempts = getattr(
                settings, "BOOKING_CONFIRMATION_ATTEMPTS", DEFAULT_CONFIRMATION_ATTEMPTS
            )
        self.confirmation_attempts = max(1, confirmation_attempts)
        self.number_factory = number_factory

    # Reads

    def _base_queryset(self) -> QuerySet[Booking]:
        return Booking.objects.select_related("vehicle", "user")

    def get(self, booking_id: UUID) -> Booking:
        try:
            return self._base_queryset().get(pk=booking_id)
        except (Booking.DoesNotExist, ValueError, DjangoValidationError):
            raise NotFoundError(booking_id=str(booking_id)) from None

    def get_by_confirmation_number(self, number: str) -> Booking:
        try:
            return self._base_queryset().get(confirmation_number=(number or "").upper())
        except Booking.DoesNotExist:
            raise NotFoundError(confirmation_number=number) from None

    def all(self) -> QuerySet[Booking]:
        return self._base_queryset()

    def for_user(self, user_id: int) -> QuerySet[Booking]:
        return self._base_queryset().filter(user_id=user_id)

    def by_status(self, status: str) -> QuerySet[Booking]:
        return self._base_queryset().filter(status=status)

    def by_vehicle(self, vehicle_id: str) -> QuerySet[Booking]:
        return self._base_queryset().filter(vehicle_id=vehicle_id)

    def payment_in_use(self, payment_id: str, exclude_booking_id: Optional[UUID] = None) -> bool:
        """True when any stored booking, cancelled ones included, holds ``payment_id``."""
        bookings = Booking.objects.filter(payment_id=payment_id)
        if exclude_booking_id is not None:
            bookings = bookings.exclude(pk=exclude_booking_id)
        return bookings.exists()

    # Writes

    def _lock_vehicle(self, vehicle_id: str) -> Vehicle:
        try:
            return Vehicle.objects.select_for_update().get(pk=vehicle_id)
        except Vehicle.DoesNotExist:
            raise ValidationError([FieldError("vehicle_id", "Vehicle not found.")]) from None

    def create(self, booking: Booking, idempotency_key: Optional[str] = None) -> CreateOutcome:
        """
        Insert ``booking`` unless its range collides with a blocking booking.

        A repeated idempotency key for the same vehicle and range returns the
        booking stored the first time instead of inserting again.
        """
        try:
            with transaction.atomic():
                self._lock_vehicle(booking.vehicle_id)

                if idempotency_key:
                    existing = (
                        self._base_queryset()
                        .filter(vehicle_id=booking.vehicle_id, idempotency_key=idempotency_key)
                        .first()
                    )
                    if existing is not None:
                        return self._replay(existing, booking)
                    booking.idempotency_key = idempotency_key

                if booking.payment_id and self.payment_in_use(booking.payment_id):
                    logger.warning(
                        "booking rejected: payment %s already belongs to a booking",
                        booking.payment_id,
                    )
                    raise PaymentAlreadyUsedError(payment_id=booking.payment_id)

                conflicts = self.availability.conflicts(
                    booking.vehicle_id, booking.start_date, booking.end_date
                )
                if conflicts:
                    suggestions = self.availability.suggest_alternatives(
                        booking.vehicle_id, booking.start_date, booking.end_date
                    )
                    logger.warning(
                        "booking rejected: vehicle %s already reserved for %s..%s (%s conflicts)",
                        booking.vehicle_id,
                        booking.start_date,
                        booking.end_date,
                        len(conflicts),
                    )
                    raise AvailabilityConflictError(conflicts, suggestions)

                self._insert_with_confirmation_number(booking)
        except DatabaseError as exc:
            logger.exception(
                "booking insert failed for vehicle %s (%s..%s)",
                booking.vehicle_id,
                booking.start_date,
                booking.end_date,
            )
            raise PersistenceError(vehicle_id=booking.vehicle_id) from exc

        logger.info(
            "booking %s created for vehicle %s (%s..%s)",
            booking.confirmation_number,
            booking.vehicle_id,
            booking.start_date,
            booking.end_date,
        )
        return CreateOutcome(booking=booking)

    def _replay(self, existing: Booking, requested: Booking) -> CreateOutcome:
        same_range = (
            existing.start_date == requested.start_date and existing.end_date == requested.end_date
        )
        if not same_range:
            raise IdempotencyKeyReusedError(
                [
                    FieldError(
                        "idempotency_key",
                        "This idempotency key was already used for different dates.",
                    )
                ]
            )
        logger.info(
            "booking %s replayed for idempotency key %s",
            existing.confirmation_number,
            existing.idempotency_key,
        )
        return CreateOutcome(booking=existing, replayed=True)

    def _insert_with_confirmation_number(self, booking: Booking) -> None:
        for attempt in range(1, self.confirmation_attempts + 1):
            booking.confirmation_number = self.number_factory()
            try:
                with transaction.atomic():
                    booking.save(force_insert=True)
                return
            except IntegrityError:
                taken = Booking.objects.filter(
                    confirmation_number=booking.confirmation_number
                ).exists()
                if not taken:
                    raise
                logger.info(
                    "confirmation number %s already taken (attempt %s/%s)",
                    booking.confirmation_number,
                    attempt,
                    self.confirmation_attempts,
                )
        raise PersistenceError(
            "Could not allocate a confirmation number. Please try again.",
            vehicle_id=booking.vehicle_id,
        )

    def update(self, booking_id: UUID, mutate: Callable[[Booking], None]) -> Booking:
        """
        Apply ``mutate`` to a locked booking and save it.

        Exceptions raised by ``mutate`` roll the change back and propagate.
        """
        try:
            vehicle_id = (
                Booking.objects.filter(pk=booking_id).values_list("vehicle_id", flat=True).first()
            )
        except (ValueError, DjangoValidationError):
            vehicle_id = None
        if vehicle_id is None:
            raise NotFoundError(booking_id=str(booking_id))
        try:
            with transaction.atomic():
                self._lock_vehicle(vehicle_id)
                booking = self._base_queryset().select_for_update(of=("self",)).get(pk=booking_id)
                mutate(booking)
                booking.save()
        except DatabaseError as exc:
            logger.exception("booking %s update failed (vehicle %s)", booking_id, vehicle_id)
            raise PersistenceError(booking_id=str(booking_id), vehicle_id=vehicle_id) from exc
        return booking

    def refund_unclaimed_payment(
        self, vehicle_id: str, payment_id: str, refund: Callable[[], T]
    ) -> Optional[T]:
        """
        Call ``refund`` unless a booking already holds ``payment_id``.

        The check and the refund run under the vehicle lock, so a booking
        inserted concurrently with the same payment is never refunded.
        Returns None when the payment is claimed.
        """
        with transaction.atomic():
            Vehicle.objects.select_for_update().filter(pk=vehicle_id).first()
            if self.payment_in_use(payment_id):
                logger.warning(
                    "payment %s belongs to a stored booking; not refunding it", payment_id
                )
                return None
            return refund()
