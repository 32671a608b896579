"""Stripe PaymentIntents and refunds for booking payments."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Mapping, Optional

import stripe
from django.conf import settings

logger = logging.getLogger(__name__)

_TRANSIENT_ERRORS = (
    stripe.error.RateLimitError,
    stripe.error.APIConnectionError,
    stripe.error.APIError,
)
_CREDENTIAL_ERRORS = (stripe.error.AuthenticationError, stripe.error.PermissionError)

# Metadata "kind" of the PaymentIntents created for bookings.
BOOKING_PAYMENT_KIND = "booking_charge"


class PaymentGatewayError(Exception):
    """Anything that stopped a Stripe payment call from going through."""


class PaymentConfigurationError(PaymentGatewayError):
    """Missing or rejected Stripe credentials."""


class PaymentTransientError(PaymentGatewayError):
    """Stripe was unreachable or throttled; the same call may be retried."""


class PaymentError(PaymentGatewayError):
    """Stripe refused the request itself."""


class PaymentVerificationError(PaymentGatewayError):
    """The PaymentIntent does not prove that this renter paid for this stay."""


@dataclass(frozen=True)
class RefundResult:
    refund_id: str
    status: str
    amount: Optional[Decimal] = None


@dataclass(frozen=True)
class PaymentIntentResult:
    payment_id: str
    client_secret: str
    amount: Decimal
    currency: str


@dataclass(frozen=True)
class VerifiedPayment:
    payment_id: str
    amount: Decimal
    currency: str


def _api_key() -> str:
    api_key = getattr(settings, "STRIPE_SECRET_KEY", "")
    if not api_key:
        raise PaymentConfigurationError("STRIPE_SECRET_KEY is not set.")
    return api_key


def to_cents(amount: Decimal) -> int:
    """Convert Decimal euros to integer cents, rounding half up."""
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def booking_currency() -> str:
    return (getattr(settings, "BOOKING_CURRENCY", "EUR") or "EUR").lower()


def _intent_value(intent: Any, field: str, default: Any = None) -> Any:
    if isinstance(intent, Mapping):
        return intent.get(field, default)
    return getattr(intent, field, default)


def _intent_metadata(intent: Any) -> dict[str, str]:
    metadata = _intent_value(intent, "metadata", None) or {}
    if not hasattr(metadata, "items"):
        return {}
    return {str(key): str(value) for key, value in metadata.items()}


def check_intent(
    intent: Any,
    *,
    user_id: int,
    amount: Optional[Decimal] = None,
    metadata: Optional[Mapping[str, str]] = None,
) -> VerifiedPayment:
    """
    Accept ``intent`` only as a captured booking payment made by ``user_id``.

    The intent must have succeeded in the booking currency, carry the
    renter's id (and every ``metadata`` value) in its metadata, and, when
    ``amount`` is given, have received exactly that amount.
    """
    payment_id = _intent_value(intent, "id", "") or ""
    status = _intent_value(intent, "status", "")
    if status != "succeeded":
        raise PaymentVerificationError(f"Payment {payment_id} has not succeeded ({status}).")

    currency = (_intent_value(intent, "currency", "") or "").lower()
    if currency != booking_currency():
        raise PaymentVerificationError(
            f"Payment {payment_id} was made in {currency or 'no currency'}."
        )

    found = _intent_metadata(intent)
    if found.get("kind") != BOOKING_PAYMENT_KIND or found.get("user_id") != str(user_id):
        raise PaymentVerificationError(f"Payment {payment_id} does not belong to this renter.")
    for key, expected in (metadata or {}).items():
        if found.get(key) != str(expected):
            raise PaymentVerificationError(f"Payment {payment_id} was made for a different {key}.")

    received = int(_intent_value(intent, "amount_received", 0) or 0)
    if amount is not None and received != to_cents(amount):
        raise PaymentVerificationError(
            f"Payment {payment_id} received {received} cents, expected {to_cents(amount)}."
        )
    return VerifiedPayment(
        payment_id=payment_id,
        amount=Decimal(received) / 100,
        currency=currency,
    )


def _as_gateway_error(exc: stripe.error.StripeError) -> PaymentGatewayError:
    """Translate a Stripe SDK error into a gateway error."""
    if isinstance(exc, _TRANSIENT_ERRORS):
        return PaymentTransientError("Stripe is temporarily unavailable; retry later.")
    if isinstance(exc, _CREDENTIAL_ERRORS):
        return PaymentConfigurationError("Stripe rejected the configured API key.")
    return PaymentError(exc.user_message or "Stripe refused the request.")


class StripePaymentGateway:
    """Creates, verifies and refunds booking PaymentIntents through the Stripe API."""

    def create_intent(
        self,
        *,
        amount: Decimal,
        user_id: int,
        metadata: Mapping[str, str],
    ) -> PaymentIntentResult:
        """Open an automatic-capture PaymentIntent tied to the renter and the stay."""
        if amount <= Decimal("0"):
            raise PaymentError("Booking payments must be greater than zero.")

        stripe.api_key = _api_key()
        currency = booking_currency()
        try:
            intent = stripe.PaymentIntent.create(
                amount=to_cents(amount),
                currency=currency,
                automatic_payment_methods={"enabled": True},
                capture_method="automatic",
                metadata={
                    **{key: str(value) for key, value in metadata.items()},
                    "kind": BOOKING_PAYMENT_KIND,
                    "user_id": str(user_id),
                },
            )
        except stripe.error.StripeError as exc:
            raise _as_gateway_error(exc) from exc

        logger.info("Stripe PaymentIntent %s created for user %s", intent.id, user_id)
        return PaymentIntentResult(
            payment_id=intent.id,
            client_secret=getattr(intent, "client_secret", "") or "",
            amount=amount,
            currency=currency,
        )

    def verify(
        self,
        payment_id: str,
        *,
        user_id: int,
        amount: Optional[Decimal] = None,
        metadata: Optional[Mapping[str, str]] = None,
    ) -> VerifiedPayment:
        """Retrieve PaymentIntent ``payment_id`` and run check_intent() on it."""
        intent_id = (payment_id or "").strip()
        if not intent_id:
            raise PaymentVerificationError("A payment reference is required.")

        stripe.api_key = _api_key()
        try:
            intent = stripe.PaymentIntent.retrieve(intent_id)
        except stripe.error.InvalidRequestError as exc:
            if getattr(exc, "code", "") == "resource_missing":
                raise PaymentVerificationError(f"Payment {intent_id} does not exist.") from exc
            raise _as_gateway_error(exc) from exc
        except stripe.error.StripeError as exc:
            raise _as_gateway_error(exc) from exc

        return check_intent(intent, user_id=user_id, amount=amount, metadata=metadata)

    def refund(
        self,
        payment_id: str,
        *,
        amount: Optional[Decimal] = None,
        idempotency_key: Optional[str] = None,
    ) -> RefundResult:
        """
        Refund ``amount`` (or everything when None) of PaymentIntent ``payment_id``.

        Missing intents are treated as already refunded.
        """
        intent_id = (payment_id or "").strip()
        if not intent_id:
            raise PaymentError("A payment reference is required for a refund.")

        stripe.api_key = _api_key()
        params: dict[str, object] = {"payment_intent": intent_id}
        if amount is not None:
            params["amount"] = to_cents(amount)
        if idempotency_key:
            params["idempotency_key"] = idempotency_key

        try:
            refund = stripe.Refund.create(**params)
        except stripe.error.InvalidRequestError as exc:
            if getattr(exc, "code", "") != "resource_missing":
                raise _as_gateway_error(exc) from exc
            logger.info("Stripe PaymentIntent %s missing; assuming already refunded.", intent_id)
            return RefundResult(refund_id="", status="missing", amount=amount)
        except stripe.error.StripeError as exc:
            raise _as_gateway_error(exc) from exc

        logger.info("Stripe refund %s created for PaymentIntent %s", refund.id, intent_id)
        return RefundResult(
            refund_id=refund.id,
            status=getattr(refund, "status", "") or "",
            amount=amount,
        )
