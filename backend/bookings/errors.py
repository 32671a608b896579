"""Structured errors raised by the booking engine."""

from __future__ import annotations

from typing import Any, Iterable, Optional, Sequence


class BookingError(Exception):
    """Base class for booking engine failures; callers branch on ``kind``."""

    kind = "booking_error"
    status_code = 400
    default_message = "Booking request failed."

    def __init__(self, message: Optional[str] = None, **context: Any) -> None:
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)

    def as_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": self.message, **self.context}


class ValidationError(BookingError):
    """One or more request fields are invalid."""

    kind = "validation_error"
    default_message = "Booking request is invalid."

    def __init__(self, errors: Sequence[Any], message: Optional[str] = None) -> None:
        self.errors = list(errors)
        super().__init__(message, errors=[_error_as_dict(error) for error in self.errors])


class IdempotencyKeyReusedError(ValidationError):
    """An idempotency key came back for a different date range."""


class AvailabilityConflictError(BookingError):
    """The vehicle is already reserved for part of the requested range."""

    kind = "availability_conflict"
    status_code = 409
    default_message = "Vehicle is not available for the selected dates."

    def __init__(
        self,
        conflicts: Iterable[Any],
        suggested_dates: Iterable[Any] = (),
        message: Optional[str] = None,
    ) -> None:
        self.conflicts = list(conflicts)
        self.suggested_dates = list(suggested_dates)
        super().__init__(
            message,
            conflicts=[
                {
                    "start_date": booking.start_date.isoformat(),
                    "end_date": booking.end_date.isoformat(),
                }
                for booking in self.conflicts
            ],
            suggested_dates=[window.as_dict() for window in self.suggested_dates],
        )


class NotFoundError(BookingError):
    kind = "not_found"
    status_code = 404
    default_message = "Booking not found."


class AuthorizationError(BookingError):
    kind = "not_authorized"
    status_code = 403
    default_message = "You are not allowed to change this booking."


class InvalidStateTransitionError(BookingError):
    kind = "invalid_state_transition"
    status_code = 409
    default_message = "This status change is not allowed."

    def __init__(self, current: str, requested: str, message: Optional[str] = None) -> None:
        super().__init__(
            message or f"Cannot move a {current} booking to {requested}.",
            current_status=current,
            requested_status=requested,
        )


class CancellationNotAllowedError(BookingError):
    """The booking already reached a terminal state."""

    kind = "cancellation_not_allowed"
    status_code = 409
    default_message = "Only pending or confirmed bookings can be cancelled."


class PersistenceError(BookingError):
    kind = "persistence_error"
    status_code = 500
    default_message = "Could not save the booking. Please try again."


class PaymentNotVerifiedError(BookingError):
    """The payment reference does not prove the renter paid for this stay."""

    kind = "payment_not_verified"
    status_code = 402
    default_message = "We could not confirm your payment for this booking."


class PaymentAlreadyUsedError(BookingError):
    kind = "payment_already_used"
    status_code = 409
    default_message = "This payment is already attached to another booking."


class PaymentProviderError(BookingError):
    """Stripe could not be reached or rejected our credentials."""

    kind = "payment_provider_unavailable"
    status_code = 502
    default_message = "Payments are temporarily unavailable. Please try again later."


class RefundFailedError(BookingError):
    """The payment provider rejected a refund; nothing was changed."""

    kind = "refund_failed"
    status_code = 502
    default_message = "We could not refund your payment. Please try again later."


class BookingCreationFailedAfterPaymentError(BookingError):
    """
    Payment was captured but the booking could not be created.

    The payment has been reversed when ``refund_succeeded`` is True; otherwise
    the refund must be followed up manually.
    """

    kind = "booking_failed_after_payment"
    default_message = "Your booking could not be completed and your payment was reversed."

    def __init__(
        self,
        cause: BookingError,
        *,
        payment_id: str,
        refund_id: Optional[str],
        refund_succeeded: bool,
    ) -> None:
        self.cause = cause
        self.status_code = cause.status_code
        message = None
        if not refund_succeeded:
            message = (
                "Your booking could not be completed. We could not reverse your payment "
                "automatically; our team will refund it."
            )
        super().__init__(
            message,
            cause=cause.as_dict(),
            payment_id=payment_id,
            refund_id=refund_id,
            payment_refunded=refund_succeeded,
        )


def _error_as_dict(error: Any) -> Any:
    as_dict = getattr(error, "as_dict", None)
    return as_dict() if callable(as_dict) else error
