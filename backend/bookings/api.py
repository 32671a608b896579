"""API views for availability, quotes and bookings."""

from __future__ import annotations

import logging

from rest_framework import mixins, permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.views import APIView

from vehicles.serializers import VehicleSerializer

from .availability import AvailabilityIndex
from .confirmation import is_confirmation_number
from .domain import Actor, is_owner_or_admin
from .errors import AuthorizationError, BookingError, NotFoundError, ValidationError
from .filters import BookingFilter
from .lifecycle import BookingLifecycle, build_lifecycle
from .models import Booking
from .serializers import (
    AvailabilityCheckSerializer,
    AvailabilitySearchSerializer,
    BookingRequestSerializer,
    BookingSerializer,
    BookingStatusSerializer,
    CancelBookingSerializer,
    MarkPaidSerializer,
    QuoteRequestSerializer,
    flatten_errors,
)

logger = logging.getLogger(__name__)


def error_response(exc: BookingError) -> Response:
    return Response({"success": False, "error": exc.as_dict()}, status=exc.status_code)


def parse(serializer_class, data):
    """Validate ``data`` or raise a structured ValidationError."""
    serializer = serializer_class(data=data)
    if not serializer.is_valid():
        raise ValidationError(flatten_errors(serializer.errors))
    return serializer


class AvailabilityCheckView(APIView):
    """Tell the booking form whether a vehicle is free for a date range."""

    permission_classes = (permissions.AllowAny,)

    def post(self, request, *args, **kwargs):
        try:
            data = parse(AvailabilityCheckSerializer, request.data).validated_data
        except BookingError as exc:
            return error_response(exc)
        report = AvailabilityIndex().check(
            data["vehicle_id"], data["start_date"], data["end_date"]
        )
        return Response(report.as_dict(), status=status.HTTP_200_OK)


class AvailabilitySearchView(APIView):
    """List active vehicles free for a date range, optionally near a location."""

    permission_classes = (permissions.AllowAny,)

    def get(self, request, *args, **kwargs):
        try:
            data = parse(AvailabilitySearchSerializer, request.query_params).validated_data
        except BookingError as exc:
            return error_response(exc)
        vehicles = AvailabilityIndex().search(
            data["start_date"], data["end_date"], data.get("location") or None
        )
        return Response(
            {
                "available_vehicles": VehicleSerializer(vehicles, many=True).data,
                "total_found": len(vehicles),
            },
            status=status.HTTP_200_OK,
        )


class BookingViewSet(mixins.ListModelMixin, viewsets.GenericViewSet):
    """Create, inspect and move bookings through their lifecycle."""

    serializer_class = BookingSerializer
    permission_classes = (permissions.IsAuthenticated,)
    filterset_class = BookingFilter
    ordering_fields = ("created_at", "start_date")

    def get_lifecycle(self) -> BookingLifecycle:
        return build_lifecycle()

    def get_queryset(self):
        """Renters see their own bookings; staff see everything."""
        user = self.request.user
        if not user.is_authenticated:
            return Booking.objects.none()
        lifecycle = self.get_lifecycle()
        if user.is_staff:
            return lifecycle.all()
        return lifecycle.for_user(user.id)

    def create(self, request, *args, **kwargs):
        """Reserve a vehicle; a repeated idempotency key returns the first booking."""
        try:
            serializer = parse(BookingRequestSerializer, request.data)
            booking_request = serializer.to_request(
                request.user.id, request.headers.get("Idempotency-Key")
            )
            outcome = self.get_lifecycle().create(booking_request)
        except BookingError as exc:
            return error_response(exc)

        return Response(
            {
                "success": True,
                "booking_id": str(outcome.booking.id),
                "replayed": outcome.replayed,
                "booking": BookingSerializer(outcome.booking).data,
            },
            status=status.HTTP_200_OK if outcome.replayed else status.HTTP_201_CREATED,
        )

    def retrieve(self, request, pk=None, *args, **kwargs):
        try:
            booking = self.get_lifecycle().get_for_actor(pk, Actor.from_user(request.user))
        except BookingError as exc:
            return error_response(exc)
        return Response(BookingSerializer(booking).data, status=status.HTTP_200_OK)

    @action(detail=False, methods=["get"], url_path=r"by-number/(?P<number>[^/.]+)")
    def by_number(self, request, number=None, *args, **kwargs):
        """Look a booking up by its confirmation number."""
        try:
            if not is_confirmation_number((number or "").upper()):
                raise NotFoundError(confirmation_number=number)
            booking = self.get_lifecycle().get_by_confirmation_number(number)
            if not is_owner_or_admin(booking, Actor.from_user(request.user)):
                raise AuthorizationError("You are not allowed to view this booking.")
        except BookingError as exc:
            return error_response(exc)
        return Response(BookingSerializer(booking).data, status=status.HTTP_200_OK)

    @action(
        detail=False,
        methods=["post"],
        url_path="quote",
        permission_classes=[permissions.AllowAny],
    )
    def quote(self, request, *args, **kwargs):
        """Price a stay without booking it."""
        try:
            data = parse(QuoteRequestSerializer, request.data).validated_data
            breakdown = self.get_lifecycle().quote_for(
                data["vehicle_id"],
                data["start_date"],
                data["end_date"],
                data.get("addon_ids") or (),
                data.get("insurance_package_id") or "",
                data.get("mileage_package_id") or "",
            )
        except BookingError as exc:
            return error_response(exc)
        return Response(
            {"success": True, "quote": breakdown.as_totals()},
            status=status.HTTP_200_OK,
        )

    @action(detail=False, methods=["post"], url_path="payment-intent")
    def payment_intent(self, request, *args, **kwargs):
        """Open a Stripe PaymentIntent for a stay; the client confirms it with the secret."""
        try:
            data = parse(QuoteRequestSerializer, request.data).validated_data
            started = self.get_lifecycle().start_payment(
                request.user.id,
                data["vehicle_id"],
                data["start_date"],
                data["end_date"],
                data.get("addon_ids") or (),
                data.get("insurance_package_id") or "",
                data.get("mileage_package_id") or "",
            )
        except BookingError as exc:
            return error_response(exc)
        return Response(
            {
                "success": True,
                "payment_id": started.intent.payment_id,
                "client_secret": started.intent.client_secret,
                "amount": str(started.intent.amount),
                "currency": started.intent.currency,
                "quote": started.breakdown.as_totals(),
            },
            status=status.HTTP_201_CREATED,
        )

    @action(detail=True, methods=["post"], url_path="pay")
    def pay(self, request, pk=None, *args, **kwargs):
        """Confirm a pending booking once its PaymentIntent checks out."""
        try:
            data = parse(MarkPaidSerializer, request.data).validated_data
            booking = self.get_lifecycle().mark_paid(
                pk, data["payment_id"], Actor.from_user(request.user)
            )
        except BookingError as exc:
            return error_response(exc)
        return Response(BookingSerializer(booking).data, status=status.HTTP_200_OK)

    @action(detail=True, methods=["post"], url_path="cancel")
    def cancel(self, request, pk=None, *args, **kwargs):
        """Cancel a booking (renter or staff) and report the fee and refund."""
        try:
            data = parse(CancelBookingSerializer, request.data).validated_data
            outcome = self.get_lifecycle().cancel(
                pk, data.get("reason", "").strip(), Actor.from_user(request.user)
            )
        except BookingError as exc:
            return error_response(exc)
        return Response(
            {
                "success": True,
                "cancellation_fee": str(outcome.settlement.cancellation_fee),
                "refund_amount": str(outcome.settlement.refund_amount),
                "fee_percentage": str(outcome.settlement.fee_percentage),
                "days_until_pickup": outcome.days_until_pickup,
                "booking": BookingSerializer(outcome.booking).data,
            },
            status=status.HTTP_200_OK,
        )

    @action(
        detail=True,
        methods=["post"],
        url_path="status",
        permission_classes=[permissions.IsAdminUser],
    )
    def set_status(self, request, pk=None, *args, **kwargs):
        """Confirm or complete a booking (staff only)."""
        try:
            data = parse(BookingStatusSerializer, request.data).validated_data
            booking = self.get_lifecycle().update_status(pk, data["status"])
        except BookingError as exc:
            return error_response(exc)
        return Response(BookingSerializer(booking).data, status=status.HTTP_200_OK)
